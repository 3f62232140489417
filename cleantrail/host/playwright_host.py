"""
Playwright-backed host for running the engine against a real Chromium
browser context.

Implements every browser-side collaborator protocol on top of one
``BrowserContext``:

- cookies through ``context.cookies()`` / ``context.clear_cookies()``;
- block rules through a single ``context.route("**/*")`` handler that
  aborts matching requests and reports each match;
- page storage cleanup through ``page.evaluate``, falling back to the
  CDP ``Storage.clearDataForOrigin`` command once the tab is gone;
- cache clearing and storage estimates through CDP and
  ``navigator.storage.estimate()``.

Pages are numbered as they open and play the role of tabs; their
main-frame navigations and ``close`` events are dispatched to the
engine as ``Navigation`` and ``Removal`` events.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
from urllib import parse

from playwright import async_api

from cleantrail.engine import events
from cleantrail.host import protocols
from cleantrail.models import cleanup, trackers
from cleantrail.utils import errors, logger

log = logger.create_logger("PlaywrightHost")

# Network rule resource types mapped to Playwright request resource types.
_RESOURCE_TYPE_MAP: dict[str, frozenset[str]] = {
    "script": frozenset({"script"}),
    "xmlhttprequest": frozenset({"xhr", "fetch"}),
    "image": frozenset({"image"}),
    "stylesheet": frozenset({"stylesheet"}),
    "sub_frame": frozenset({"document"}),
}

_STORAGE_CLEANUP_JS = """
async (opts) => {
  if (opts.deleteLocalStorage) localStorage.clear();
  if (opts.deleteSessionStorage) sessionStorage.clear();
  if (opts.deleteIndexedDB && indexedDB.databases) {
    const dbs = await indexedDB.databases();
    for (const db of dbs) if (db.name) indexedDB.deleteDatabase(db.name);
  }
  return location.hostname;
}
"""

_STORAGE_ESTIMATE_JS = "() => navigator.storage && navigator.storage.estimate ? navigator.storage.estimate().then(e => e.usage || 0) : 0"

# Reports calls to APIs commonly used for fingerprinting through an exposed binding.
_FINGERPRINT_DETECTOR_JS = """
(() => {
  const apis = [
    ["CanvasRenderingContext2D.prototype", "getImageData"],
    ["HTMLCanvasElement.prototype", "toDataURL"],
    ["WebGLRenderingContext.prototype", "getParameter"],
    ["OfflineAudioContext.prototype", "startRendering"],
  ];
  for (const [path, name] of apis) {
    try {
      const owner = path.split(".").reduce((o, p) => o[p], window);
      const original = owner[name];
      if (typeof original !== "function") continue;
      owner[name] = new Proxy(original, {
        apply(target, thisArg, args) {
          try { window.cleantrailFingerprint(`${path}.${name}`, location.href); } catch (e) {}
          return Reflect.apply(target, thisArg, args);
        },
      });
    } catch (e) {}
  }
})();
"""


def _cookie_from_playwright(raw: dict[str, Any]) -> cleanup.BrowserCookie:
    return cleanup.BrowserCookie(
        name=raw.get("name", ""),
        domain=raw.get("domain", ""),
        path=raw.get("path", "/"),
        secure=bool(raw.get("secure", False)),
        value=raw.get("value", ""),
    )


def rule_matches_host(rule: trackers.BlockRule, hostname: str) -> bool:
    """``||domain^`` matches the domain itself and any subdomain."""
    domain = rule.match_pattern.removeprefix("||").removesuffix("^")
    return hostname == domain or hostname.endswith("." + domain)


class TabRegistry:
    """Numbers pages as tabs and remembers their last URL."""

    def __init__(self) -> None:
        self._next_id = 1
        self._ids: dict[int, int] = {}
        self.pages: dict[int, async_api.Page] = {}
        self.urls: dict[int, str] = {}
        self.active_tab: int | None = None

    def register(self, page: async_api.Page) -> int:
        key = id(page)
        if key not in self._ids:
            self._ids[key] = self._next_id
            self.pages[self._next_id] = page
            self._next_id += 1
        tab_id = self._ids[key]
        self.active_tab = tab_id
        return tab_id

    def tab_id(self, page: async_api.Page | None) -> int | None:
        return self._ids.get(id(page)) if page is not None else None

    def forget(self, tab_id: int) -> None:
        """Drop a closed page; its URL stays until ``release``.

        Closing the active tab activates the newest remaining one.
        """
        page = self.pages.pop(tab_id, None)
        if page is not None:
            self._ids.pop(id(page), None)
        if self.active_tab == tab_id:
            self.active_tab = max(self.pages, default=None)

    def release(self, tab_id: int) -> None:
        self.urls.pop(tab_id, None)

    def any_open_page(self) -> async_api.Page | None:
        for page in self.pages.values():
            if not page.is_closed():
                return page
        return None


class PlaywrightCookieStore:
    def __init__(self, context: async_api.BrowserContext) -> None:
        self._context = context

    async def get_all(self, domain: str | None = None) -> list[cleanup.BrowserCookie]:
        cookies = [_cookie_from_playwright(dict(c)) for c in await self._context.cookies()]
        if domain is None:
            return cookies
        return [c for c in cookies if c.domain.lstrip(".") == domain or c.domain.lstrip(".").endswith("." + domain)]

    async def remove(self, url: str, name: str) -> bool:
        parsed = parse.urlparse(url)
        if not parsed.hostname:
            return False
        before = len(await self._context.cookies(url))
        await self._context.clear_cookies(name=name, domain=parsed.hostname, path=parsed.path or "/")
        # Host-wide cookies are stored with a leading dot.
        await self._context.clear_cookies(name=name, domain=f".{parsed.hostname}", path=parsed.path or "/")
        return len(await self._context.cookies(url)) < before


class PlaywrightRuleEngine:
    """Enforces block rules with one catch-all route handler."""

    def __init__(self, context: async_api.BrowserContext, tabs: TabRegistry) -> None:
        self._context = context
        self._tabs = tabs
        self._rules: dict[int, trackers.BlockRule] = {}
        self._listeners: list[protocols.MatchListener] = []
        self._routed = False

    @property
    def rules(self) -> dict[int, trackers.BlockRule]:
        return dict(self._rules)

    async def install_rules(self, add: list[trackers.BlockRule], remove: list[int]) -> None:
        """Apply removals, then additions; a duplicate id rejects the whole update."""
        removed = set(remove)
        remaining = {rid: rule for rid, rule in self._rules.items() if rid not in removed}
        duplicates = sorted(rule.id for rule in add if rule.id in remaining)
        if duplicates:
            raise ValueError(f"Rule ids already installed: {duplicates[:5]}")
        remaining.update({rule.id: rule for rule in add})
        self._rules = remaining
        if not self._routed:
            await self._context.route("**/*", self._handle_route)
            self._routed = True

    def on_match(self, listener: protocols.MatchListener) -> None:
        self._listeners.append(listener)

    def find_rule(self, url: str, resource_type: str, *, is_sub_frame: bool = False) -> trackers.BlockRule | None:
        hostname = parse.urlparse(url).hostname
        if not hostname:
            return None
        candidates = [
            rule
            for rule in self._rules.values()
            if rule_matches_host(rule, hostname)
            and any(resource_type in _RESOURCE_TYPE_MAP.get(t, frozenset()) for t in rule.resource_types)
            and (resource_type != "document" or is_sub_frame)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: (r.priority, -r.id))

    async def _handle_route(self, route: async_api.Route, request: async_api.Request) -> None:
        try:
            frame = request.frame
            is_sub_frame = frame.parent_frame is not None
            page = frame.page
        except Exception:
            # Service worker requests have no frame.
            is_sub_frame, page = False, None

        rule = self.find_rule(request.url, request.resource_type, is_sub_frame=is_sub_frame)
        if rule is None:
            await route.fallback()
            return

        await route.abort("blockedbyclient")
        match = trackers.RuleMatch(url=request.url, rule_id=rule.id, tab_id=self._tabs.tab_id(page))
        for listener in list(self._listeners):
            try:
                result = listener(match)
                if isinstance(result, Awaitable):
                    await result
            except Exception as exc:
                log.warn("Match listener failed", {"url": request.url, "error": errors.get_error_message(exc)})


class PlaywrightSiteData:
    """Cache and storage clearing through the Chrome DevTools Protocol.

    Origin-scoped clears run on a browser-level session so they still
    work after the last page has closed.  CDP has no per-origin HTTP
    cache command, so a site-scoped cache clear empties the origin's
    CacheStorage only; the global clear drops the whole HTTP cache.
    """

    def __init__(self, context: async_api.BrowserContext, tabs: TabRegistry) -> None:
        self._context = context
        self._tabs = tabs

    async def _page_cdp(self) -> async_api.CDPSession:
        page = self._tabs.any_open_page()
        if page is None:
            raise RuntimeError("No open page to attach a CDP session to")
        return await self._context.new_cdp_session(page)

    async def _browser_cdp(self) -> async_api.CDPSession:
        browser = self._context.browser
        if browser is None:
            # Persistent contexts have no Browser object.
            return await self._page_cdp()
        return await browser.new_browser_cdp_session()

    async def clear(self, *, origins: list[str] | None, cookies: bool = False, cache: bool = False) -> None:
        # Network.clearBrowserCache is only served by page targets.
        session = await (self._page_cdp() if origins is None else self._browser_cdp())
        try:
            if origins is None:
                if cache:
                    await session.send("Network.clearBrowserCache")
                if cookies:
                    await self._context.clear_cookies()
                return
            storage_types = ",".join(t for t, wanted in (("cache_storage", cache), ("cookies", cookies)) if wanted)
            for origin in origins:
                await session.send("Storage.clearDataForOrigin", {"origin": origin, "storageTypes": storage_types})
        finally:
            await session.detach()

    async def clear_origin_storage(self, origin: str, payload: cleanup.StorageCleanupRequest) -> None:
        storage_types = ",".join(
            t for t, wanted in (("local_storage", payload.delete_local_storage), ("indexeddb", payload.delete_indexed_db)) if wanted
        )
        if not storage_types:
            return
        session = await self._browser_cdp()
        try:
            await session.send("Storage.clearDataForOrigin", {"origin": origin, "storageTypes": storage_types})
        finally:
            await session.detach()


class PlaywrightScriptInjector:
    def __init__(self, tabs: TabRegistry, site_data: PlaywrightSiteData) -> None:
        self._tabs = tabs
        self._site_data = site_data

    async def execute(self, tab_id: int, payload: cleanup.StorageCleanupRequest) -> None:
        """Clear page storage in the tab, or by origin once the tab has closed.

        Session storage dies with its tab, so the origin fallback only
        covers local storage and IndexedDB.
        """
        page = self._tabs.pages.get(tab_id)
        if page is not None and not page.is_closed():
            await page.evaluate(_STORAGE_CLEANUP_JS, payload.model_dump(by_alias=True))
            return
        url = self._tabs.urls.get(tab_id)
        if not url:
            raise LookupError(f"Tab {tab_id} has no known URL")
        parsed = parse.urlparse(url)
        await self._site_data.clear_origin_storage(f"{parsed.scheme}://{parsed.netloc}", payload)


class PlaywrightStorageEstimator:
    def __init__(self, tabs: TabRegistry) -> None:
        self._tabs = tabs

    async def estimate_bytes(self) -> int:
        page = self._tabs.any_open_page()
        if page is None:
            return 0
        return int(await page.evaluate(_STORAGE_ESTIMATE_JS) or 0)


class PlaywrightHost:
    """Bundles the Playwright collaborators and forwards page events to an engine."""

    def __init__(self, context: async_api.BrowserContext) -> None:
        self.context = context
        self.tabs = TabRegistry()
        self.cookies = PlaywrightCookieStore(context)
        self.rule_engine = PlaywrightRuleEngine(context, self.tabs)
        self.site_data = PlaywrightSiteData(context, self.tabs)
        self.injector = PlaywrightScriptInjector(self.tabs, self.site_data)
        self.estimator = PlaywrightStorageEstimator(self.tabs)
        self._tasks: set[asyncio.Task[None]] = set()
        self._dispatch: Any = None

    async def bind(self, dispatch: Any, *, detect_fingerprinting: bool = True) -> None:
        """Forward page events to *dispatch* (usually ``PrivacyEngine.dispatch``)."""
        self._dispatch = dispatch
        if detect_fingerprinting:
            await self.context.expose_binding("cleantrailFingerprint", self._on_fingerprint)
            await self.context.add_init_script(_FINGERPRINT_DETECTOR_JS)
        self.context.on("page", self._watch_page)
        for page in self.context.pages:
            self._watch_page(page)

    def _spawn(self, event: events.EngineEvent, *, then: Callable[[], None] | None = None) -> None:
        """Dispatch *event* as a task; *then* runs once it has been handled."""
        if self._dispatch is None:
            if then is not None:
                then()
            return
        task = asyncio.get_running_loop().create_task(self._dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if then is not None:
            task.add_done_callback(lambda _task: then())

    def _watch_page(self, page: async_api.Page) -> None:
        tab_id = self.tabs.register(page)
        log.debug("Tab opened", {"tabId": tab_id})

        def _on_navigated(frame: async_api.Frame) -> None:
            if frame != page.main_frame:
                return
            self.tabs.urls[tab_id] = frame.url
            self._spawn(events.Navigation(tab_id=tab_id, url=frame.url, active=self.tabs.active_tab == tab_id))

        def _on_close(_page: async_api.Page) -> None:
            self.tabs.forget(tab_id)
            self._spawn(events.Removal(tab_id=tab_id), then=lambda: self.tabs.release(tab_id))

        page.on("framenavigated", _on_navigated)
        page.on("close", _on_close)

    async def _on_fingerprint(self, _source: dict[str, Any], api: str, url: str) -> None:
        self._spawn(events.FingerprintDetected(url=url, api=api))

    async def drain(self) -> None:
        """Wait for dispatched events that are still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ==========================================================================
# Browser Lifecycle
# ==========================================================================


class BrowserSession:
    """Owns the Playwright driver, browser and context for one run."""

    def __init__(self) -> None:
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self.context: async_api.BrowserContext | None = None

    async def launch(self, *, headless: bool = True) -> async_api.BrowserContext:
        log.info("Launching browser", {"headless": headless})
        self._playwright = await async_api.async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=headless,
            args=["--no-first-run", "--no-default-browser-check"],
        )
        self.context = await self._browser.new_context(locale="en-GB", java_script_enabled=True)
        log.debug("Browser launched")
        return self.context

    async def open_page(self, url: str | None = None) -> async_api.Page:
        """Open a new tab, navigating to *url* when given."""
        if self.context is None:
            raise RuntimeError("Browser has not been launched")
        page = await self.context.new_page()
        if url:
            await page.goto(url, wait_until="domcontentloaded")
        return page

    async def close(self) -> None:
        """Close context, browser and driver, logging rather than raising."""
        for label, closer in (
            ("context", self.context.close if self.context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                log.warn(f"Failed to close {label}", {"error": errors.get_error_message(exc)})
        self.context = None
        self._browser = None
        self._playwright = None
