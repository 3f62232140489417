"""Tests for the Playwright host adapter, using mocked Playwright objects."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from cleantrail.engine import events
from cleantrail.host import playwright_host
from cleantrail.models import cleanup, trackers

RESOURCE_TYPES = ("script", "xmlhttprequest", "sub_frame", "image", "stylesheet")


def _rule(rule_id: int, domain: str) -> trackers.BlockRule:
    return trackers.BlockRule.for_domain(rule_id, domain, priority=1, resource_types=RESOURCE_TYPES)


def _context() -> MagicMock:
    context = MagicMock()
    context.route = AsyncMock()
    context.cookies = AsyncMock(return_value=[])
    context.clear_cookies = AsyncMock()
    context.expose_binding = AsyncMock()
    context.add_init_script = AsyncMock()
    context.pages = []
    return context


def _page(closed: bool = False) -> MagicMock:
    page = MagicMock()
    page.is_closed = MagicMock(return_value=closed)
    page.evaluate = AsyncMock(return_value=0)
    return page


def _request(url: str, resource_type: str, page: Any = None, sub_frame: bool = False) -> MagicMock:
    request = MagicMock()
    request.url = url
    request.resource_type = resource_type
    request.frame.parent_frame = MagicMock() if sub_frame else None
    request.frame.page = page
    return request


def _route() -> MagicMock:
    return MagicMock(abort=AsyncMock(), fallback=AsyncMock())


class TestRuleMatchesHost:
    def test_domain_and_subdomains(self) -> None:
        rule = _rule(1, "tracker.com")
        assert playwright_host.rule_matches_host(rule, "tracker.com")
        assert playwright_host.rule_matches_host(rule, "cdn.tracker.com")
        assert not playwright_host.rule_matches_host(rule, "nottracker.com")


class TestTabRegistry:
    def test_register_is_stable(self) -> None:
        tabs = playwright_host.TabRegistry()
        page = _page()
        assert tabs.register(page) == tabs.register(page) == 1
        assert tabs.register(_page()) == 2
        assert tabs.active_tab == 2

    def test_forget(self) -> None:
        tabs = playwright_host.TabRegistry()
        page = _page()
        tab_id = tabs.register(page)
        tabs.forget(tab_id)
        assert tabs.tab_id(page) is None
        assert tabs.any_open_page() is None

    def test_closing_active_tab_activates_newest_remaining(self) -> None:
        tabs = playwright_host.TabRegistry()
        first, second, third = tabs.register(_page()), tabs.register(_page()), tabs.register(_page())
        tabs.forget(third)
        assert tabs.active_tab == second
        tabs.forget(first)
        assert tabs.active_tab == second
        tabs.forget(second)
        assert tabs.active_tab is None

    def test_url_kept_until_released(self) -> None:
        tabs = playwright_host.TabRegistry()
        tab_id = tabs.register(_page())
        tabs.urls[tab_id] = "https://news.com/"
        tabs.forget(tab_id)
        assert tabs.urls[tab_id] == "https://news.com/"
        tabs.release(tab_id)
        assert tab_id not in tabs.urls


# ── Rule engine ────────────────────────────────────────────────


class TestPlaywrightRuleEngine:
    @pytest.mark.asyncio
    async def test_routes_once(self) -> None:
        context = _context()
        engine = playwright_host.PlaywrightRuleEngine(context, playwright_host.TabRegistry())
        await engine.install_rules([_rule(1, "a.com")], [])
        await engine.install_rules([_rule(2, "b.com")], [])
        context.route.assert_awaited_once()
        assert set(engine.rules) == {1, 2}

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self) -> None:
        engine = playwright_host.PlaywrightRuleEngine(_context(), playwright_host.TabRegistry())
        await engine.install_rules([_rule(1, "a.com")], [])
        with pytest.raises(ValueError):
            await engine.install_rules([_rule(1, "b.com")], [])
        assert engine.rules[1].match_pattern == "||a.com^"

    @pytest.mark.asyncio
    async def test_remove_then_add_same_id(self) -> None:
        engine = playwright_host.PlaywrightRuleEngine(_context(), playwright_host.TabRegistry())
        await engine.install_rules([_rule(1, "a.com")], [])
        await engine.install_rules([_rule(1, "b.com")], [1, 2, 3])
        assert engine.rules[1].match_pattern == "||b.com^"

    @pytest.mark.asyncio
    async def test_resource_type_mapping(self) -> None:
        engine = playwright_host.PlaywrightRuleEngine(_context(), playwright_host.TabRegistry())
        await engine.install_rules([_rule(1, "a.com")], [])
        assert engine.find_rule("https://a.com/x", "fetch") is not None
        assert engine.find_rule("https://a.com/x", "xhr") is not None
        assert engine.find_rule("https://a.com/", "document") is None
        assert engine.find_rule("https://a.com/", "document", is_sub_frame=True) is not None
        assert engine.find_rule("https://a.com/font.woff", "font") is None

    @pytest.mark.asyncio
    async def test_match_aborts_and_notifies(self) -> None:
        tabs = playwright_host.TabRegistry()
        page = _page()
        tabs.register(page)
        engine = playwright_host.PlaywrightRuleEngine(_context(), tabs)
        await engine.install_rules([_rule(7, "tracker.com")], [])
        matches: list[trackers.RuleMatch] = []
        engine.on_match(AsyncMock(side_effect=matches.append))

        route = _route()
        await engine._handle_route(route, _request("https://cdn.tracker.com/t.js", "script", page))

        route.abort.assert_awaited_once_with("blockedbyclient")
        route.fallback.assert_not_awaited()
        assert matches == [trackers.RuleMatch(url="https://cdn.tracker.com/t.js", rule_id=7, tab_id=1)]

    @pytest.mark.asyncio
    async def test_non_match_falls_back(self) -> None:
        engine = playwright_host.PlaywrightRuleEngine(_context(), playwright_host.TabRegistry())
        await engine.install_rules([_rule(7, "tracker.com")], [])
        route = _route()
        await engine._handle_route(route, _request("https://news.com/app.js", "script"))
        route.fallback.assert_awaited_once()
        route.abort.assert_not_awaited()


# ── Cookies, storage, cache ────────────────────────────────────


class TestPlaywrightCookieStore:
    @pytest.mark.asyncio
    async def test_get_all_filters_domain(self) -> None:
        context = _context()
        context.cookies.return_value = [
            {"name": "a", "domain": ".news.com", "path": "/", "secure": True, "value": "1"},
            {"name": "b", "domain": "other.com", "path": "/", "secure": False, "value": "2"},
        ]
        store = playwright_host.PlaywrightCookieStore(context)
        assert [c.name for c in await store.get_all()] == ["a", "b"]
        assert [c.name for c in await store.get_all(domain="news.com")] == ["a"]

    @pytest.mark.asyncio
    async def test_remove_reports_success(self) -> None:
        context = _context()
        context.cookies.side_effect = [[{"name": "a"}], []]
        store = playwright_host.PlaywrightCookieStore(context)
        assert await store.remove("https://news.com/", "a")
        context.clear_cookies.assert_any_await(name="a", domain="news.com", path="/")
        context.clear_cookies.assert_any_await(name="a", domain=".news.com", path="/")


class TestPlaywrightScriptInjector:
    @pytest.mark.asyncio
    async def test_open_tab_uses_page(self) -> None:
        tabs = playwright_host.TabRegistry()
        page = _page()
        tab_id = tabs.register(page)
        injector = playwright_host.PlaywrightScriptInjector(tabs, MagicMock())
        await injector.execute(tab_id, cleanup.StorageCleanupRequest(delete_local_storage=True))
        _, payload = page.evaluate.await_args.args
        assert payload["deleteLocalStorage"] is True
        assert payload["deleteIndexedDB"] is False

    @pytest.mark.asyncio
    async def test_closed_tab_clears_by_origin(self) -> None:
        tabs = playwright_host.TabRegistry()
        tabs.urls[5] = "https://news.com/article"
        site_data = MagicMock(clear_origin_storage=AsyncMock())
        injector = playwright_host.PlaywrightScriptInjector(tabs, site_data)
        payload = cleanup.StorageCleanupRequest(delete_indexed_db=True)
        await injector.execute(5, payload)
        site_data.clear_origin_storage.assert_awaited_once_with("https://news.com", payload)

    @pytest.mark.asyncio
    async def test_unknown_tab_raises(self) -> None:
        injector = playwright_host.PlaywrightScriptInjector(playwright_host.TabRegistry(), MagicMock())
        with pytest.raises(LookupError):
            await injector.execute(9, cleanup.StorageCleanupRequest())


class TestPlaywrightSiteData:
    def _setup(self) -> tuple[MagicMock, MagicMock, playwright_host.PlaywrightSiteData]:
        context = _context()
        session = MagicMock(send=AsyncMock(), detach=AsyncMock())
        context.new_cdp_session = AsyncMock(return_value=session)
        context.browser.new_browser_cdp_session = AsyncMock(return_value=session)
        tabs = playwright_host.TabRegistry()
        tabs.register(_page())
        return context, session, playwright_host.PlaywrightSiteData(context, tabs)

    @pytest.mark.asyncio
    async def test_global_clear(self) -> None:
        context, session, site_data = self._setup()
        await site_data.clear(origins=None, cookies=True, cache=True)
        session.send.assert_awaited_once_with("Network.clearBrowserCache")
        context.clear_cookies.assert_awaited_once_with()
        session.detach.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_origin_clear(self) -> None:
        context, session, site_data = self._setup()
        await site_data.clear(origins=["https://a.com", "http://a.com"], cache=True)
        assert session.send.await_count == 2
        session.send.assert_any_await("Storage.clearDataForOrigin", {"origin": "http://a.com", "storageTypes": "cache_storage"})
        context.new_cdp_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_origin_clear_without_open_page(self) -> None:
        context = _context()
        session = MagicMock(send=AsyncMock(), detach=AsyncMock())
        context.browser.new_browser_cdp_session = AsyncMock(return_value=session)
        site_data = playwright_host.PlaywrightSiteData(context, playwright_host.TabRegistry())
        await site_data.clear_origin_storage("https://a.com", cleanup.StorageCleanupRequest(delete_local_storage=True, delete_indexed_db=True))
        session.send.assert_awaited_once_with(
            "Storage.clearDataForOrigin", {"origin": "https://a.com", "storageTypes": "local_storage,indexeddb"}
        )
        session.detach.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_page_raises(self) -> None:
        site_data = playwright_host.PlaywrightSiteData(_context(), playwright_host.TabRegistry())
        with pytest.raises(RuntimeError):
            await site_data.clear(origins=None, cache=True)


class TestPlaywrightStorageEstimator:
    @pytest.mark.asyncio
    async def test_no_page_is_zero(self) -> None:
        assert await playwright_host.PlaywrightStorageEstimator(playwright_host.TabRegistry()).estimate_bytes() == 0

    @pytest.mark.asyncio
    async def test_reads_estimate(self) -> None:
        tabs = playwright_host.TabRegistry()
        page = _page()
        page.evaluate.return_value = 2048
        tabs.register(page)
        assert await playwright_host.PlaywrightStorageEstimator(tabs).estimate_bytes() == 2048


# ── Page events ────────────────────────────────────────────────


class TestPlaywrightHostBinding:
    @pytest.mark.asyncio
    async def test_page_events_dispatched(self) -> None:
        context = _context()
        page = _page()
        context.pages = [page]
        host = playwright_host.PlaywrightHost(context)
        dispatch = AsyncMock()
        await host.bind(dispatch)

        handlers = {call.args[0]: call.args[1] for call in page.on.call_args_list}
        frame = page.main_frame
        frame.url = "https://news.com/"
        handlers["framenavigated"](frame)
        handlers["close"](page)
        await host.drain()

        dispatched = [call.args[0] for call in dispatch.await_args_list]
        assert dispatched == [events.Navigation(tab_id=1, url="https://news.com/", active=True), events.Removal(tab_id=1)]
        assert 1 not in host.tabs.urls
        context.expose_binding.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_subframe_navigation_ignored(self) -> None:
        context = _context()
        page = _page()
        context.pages = [page]
        host = playwright_host.PlaywrightHost(context)
        dispatch = AsyncMock()
        await host.bind(dispatch, detect_fingerprinting=False)

        handlers = {call.args[0]: call.args[1] for call in page.on.call_args_list}
        handlers["framenavigated"](MagicMock())
        await host.drain()
        dispatch.assert_not_awaited()
        context.expose_binding.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fingerprint_binding(self) -> None:
        host = playwright_host.PlaywrightHost(_context())
        dispatch = AsyncMock()
        await host.bind(dispatch)
        await host._on_fingerprint({}, "HTMLCanvasElement.prototype.toDataURL", "https://fp.example/")
        await host.drain()
        dispatch.assert_awaited_once_with(events.FingerprintDetected(url="https://fp.example/", api="HTMLCanvasElement.prototype.toDataURL"))

    @pytest.mark.asyncio
    async def test_remaining_tab_active_after_newest_closes(self) -> None:
        context = _context()
        first, second = _page(), _page()
        context.pages = [first, second]
        host = playwright_host.PlaywrightHost(context)
        dispatch = AsyncMock()
        await host.bind(dispatch, detect_fingerprinting=False)

        first_handlers = {call.args[0]: call.args[1] for call in first.on.call_args_list}
        second_handlers = {call.args[0]: call.args[1] for call in second.on.call_args_list}
        second_handlers["close"](second)
        frame = first.main_frame
        frame.url = "https://news.com/"
        first_handlers["framenavigated"](frame)
        await host.drain()

        dispatched = [call.args[0] for call in dispatch.await_args_list]
        assert dispatched == [events.Removal(tab_id=2), events.Navigation(tab_id=1, url="https://news.com/", active=True)]

    @pytest.mark.asyncio
    async def test_closing_only_tab_still_cleans_site(self) -> None:
        context = _context()
        session = MagicMock(send=AsyncMock(), detach=AsyncMock())
        context.new_cdp_session = AsyncMock(return_value=session)
        context.browser.new_browser_cdp_session = AsyncMock(return_value=session)
        page = _page()
        context.pages = [page]
        host = playwright_host.PlaywrightHost(context)
        payload = cleanup.StorageCleanupRequest(delete_local_storage=True, delete_indexed_db=True)

        async def on_event(event: events.EngineEvent) -> None:
            if isinstance(event, events.Removal):
                await host.injector.execute(event.tab_id, payload)
                await host.site_data.clear(origins=["https://hidden.onion", "http://hidden.onion"], cache=True)

        await host.bind(on_event, detect_fingerprinting=False)
        handlers = {call.args[0]: call.args[1] for call in page.on.call_args_list}
        frame = page.main_frame
        frame.url = "https://hidden.onion/"
        handlers["framenavigated"](frame)
        page.is_closed.return_value = True
        handlers["close"](page)
        await host.drain()

        sent = [call.args for call in session.send.await_args_list]
        assert ("Storage.clearDataForOrigin", {"origin": "https://hidden.onion", "storageTypes": "local_storage,indexeddb"}) in sent
        assert ("Storage.clearDataForOrigin", {"origin": "http://hidden.onion", "storageTypes": "cache_storage"}) in sent
        context.new_cdp_session.assert_not_awaited()
        assert host.tabs.urls == {}
