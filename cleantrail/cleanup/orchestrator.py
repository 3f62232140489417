"""Session cleanup orchestrator.

Drives per-tab cleanup from two host events:

- **navigation** records the tab's URL, tallies new cookie and
  storage usage for the site, runs adaptive profile selection, and
  optionally deletes the site's cookies straight away;
- **removal** applies the active profile to the site the tab was
  showing: page storage through script injection, cookies through
  the cookie store, cache through the site-data clearer.

Every step that talks to a collaborator is best-effort.  A failure
is logged and the remaining steps still run; nothing propagates to
the host.  Cookie deletion at navigation and again at removal is
intentional: each pass counts what it actually deleted.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence
from typing import Any

from cleantrail.cleanup import cookies as cookie_rules
from cleantrail.cleanup import history, profiles
from cleantrail.engine.context import EngineContext
from cleantrail.models import cleanup
from cleantrail.scoring import publisher as score_publisher
from cleantrail.scoring import site_stats
from cleantrail.store import keys
from cleantrail.utils import errors, logger
from cleantrail.utils import url as url_mod

log = logger.create_logger("Cleanup")

_BYTES_PER_MB = 1024 * 1024

_STATE_KEYS = [
    keys.PAUSE_CLEANUP,
    keys.AUTO_COOKIE_DELETION,
    keys.ADAPTIVE_PROFILES,
    keys.COOKIE_WHITELIST,
    keys.TRUSTED_SITES,
    keys.ACTIVE_PROFILE,
    keys.PROFILE_SOURCE,
    keys.CUSTOM_PROFILE_CONFIG,
]


@dataclasses.dataclass(frozen=True)
class CleanupState:
    """User settings read from the store at the start of one event."""

    paused: bool = False
    auto_cookie_deletion: bool = False
    adaptive: bool = True
    whitelist: tuple[str, ...] = ()
    trusted_sites: frozenset[str] = frozenset()
    profile_name: str = "balanced"
    profile_source: str | None = None
    custom_config: Any = None

    @property
    def profile(self) -> cleanup.CleanupProfile:
        return profiles.resolve_profile(self.profile_name, self.custom_config)

    def is_trusted(self, hostname: str) -> bool:
        return hostname in self.trusted_sites

    def is_cookie_whitelisted(self, hostname: str) -> bool:
        return cookie_rules.is_site_whitelisted(hostname, self.whitelist)


@dataclasses.dataclass
class CleanupOutcome:
    """What a tab-removal cleanup actually did."""

    hostname: str
    profile: str
    storage_requested: bool = False
    cookies_deleted: int = 0
    cache_cleared_mb: float | None = None


def _trusted_set(raw: Any) -> frozenset[str]:
    if isinstance(raw, dict):
        return frozenset(host for host, flag in raw.items() if flag)
    if isinstance(raw, (list, tuple)):
        return frozenset(str(host) for host in raw)
    return frozenset()


async def load_cleanup_state(ctx: EngineContext) -> CleanupState:
    """Read every cleanup setting in one store call."""
    stored = await errors.guarded(ctx.store.get(_STATE_KEYS), log=log, action="Read cleanup settings", fallback={})
    whitelist = stored.get(keys.COOKIE_WHITELIST)
    return CleanupState(
        paused=bool(stored.get(keys.PAUSE_CLEANUP, False)),
        auto_cookie_deletion=bool(stored.get(keys.AUTO_COOKIE_DELETION, False)),
        adaptive=bool(stored.get(keys.ADAPTIVE_PROFILES, True)),
        whitelist=tuple(str(w) for w in whitelist) if isinstance(whitelist, list) else (),
        trusted_sites=_trusted_set(stored.get(keys.TRUSTED_SITES)),
        profile_name=profiles.normalize_profile_name(stored.get(keys.ACTIVE_PROFILE), ctx.settings.default_profile),
        profile_source=stored.get(keys.PROFILE_SOURCE),
        custom_config=stored.get(keys.CUSTOM_PROFILE_CONFIG),
    )


class CleanupOrchestrator:
    """Handles tab navigation and removal, plus the global manual purge."""

    def __init__(
        self,
        ctx: EngineContext,
        publisher: score_publisher.ScorePublisher,
        category_rules: Sequence[tuple[str, str]] = (),
    ) -> None:
        self._ctx = ctx
        self._publisher = publisher
        self._category_rules: list[tuple[str, str]] = list(category_rules)

    def set_category_rules(self, rules: Sequence[tuple[str, str]]) -> None:
        self._category_rules = list(rules)

    # ==========================================================================
    # Navigation
    # ==========================================================================

    async def on_navigation(self, tab_id: int, url: str | None, *, active: bool = False) -> None:
        """Handle a tab navigating to *url*."""
        if not url_mod.is_http_url(url):
            return
        try:
            hostname = url_mod.extract_hostname(url)
        except errors.MalformedInputError as exc:
            log.debug("Ignoring navigation", {"tabId": tab_id, "error": str(exc)})
            return

        ctx = self._ctx
        state = await load_cleanup_state(ctx)
        await self._remember_tab_url(tab_id, url)

        site_cookies = await self._site_cookies(hostname)
        if site_cookies is not None:
            await self._tally_cookie_usage(hostname, len(site_cookies))
        await self._tally_cache_usage(hostname)

        if state.profile_source != "manual":
            await profiles.adapt_profile_for_host(ctx, hostname, adaptive=state.adaptive, trusted=state.is_trusted(hostname))

        if (
            active
            and state.auto_cookie_deletion
            and not state.paused
            and not state.is_cookie_whitelisted(hostname)
            and site_cookies is not None
        ):
            deleted = await self._delete_site_cookies(site_cookies, state.whitelist)
            await errors.guarded(
                history.record_cookie_cleanup(ctx, hostname, deleted, tally_daily=False),
                log=log,
                action="Record immediate cookie cleanup",
                fallback=None,
            )
            await site_stats.record_site_stat(ctx, hostname, "cookies", -deleted)
            log.info("Immediate cookie cleanup", {"hostname": hostname, "deleted": deleted})

        self._publisher.request_update()

    async def _remember_tab_url(self, tab_id: int, url: str) -> None:
        async def _update() -> None:
            stored = await self._ctx.store.get([keys.TAB_URLS])
            tab_urls = stored.get(keys.TAB_URLS) or {}
            tab_urls[str(tab_id)] = url
            await self._ctx.store.set({keys.TAB_URLS: tab_urls})

        await errors.guarded(_update(), log=log, action="Record tab URL", fallback=None, data={"tabId": tab_id})

    async def _site_cookies(self, hostname: str) -> list[cleanup.BrowserCookie] | None:
        all_cookies = await errors.guarded(
            self._ctx.collaborators.cookies.get_all(domain=hostname),
            log=log,
            action="List cookies",
            fallback=None,
            data={"hostname": hostname},
        )
        if all_cookies is None:
            return None
        return cookie_rules.cookies_for_host(all_cookies, hostname)

    async def _tally_cookie_usage(self, hostname: str, count: int) -> None:
        cache = self._ctx.cache
        new_cookies = count - cache.last_cookie_count.get(hostname, 0)
        if new_cookies > 0:
            await site_stats.record_site_stat(self._ctx, hostname, "cookies", new_cookies)
        cache.last_cookie_count[hostname] = count
        await errors.guarded(
            self._ctx.store.set({keys.PENDING_COOKIES: count}),
            log=log,
            action="Update pending cookies",
            fallback=None,
        )

    async def _tally_cache_usage(self, hostname: str) -> None:
        usage = await errors.guarded(
            self._ctx.collaborators.estimator.estimate_bytes(),
            log=log,
            action="Estimate storage",
            fallback=None,
        )
        if usage is None:
            return
        pending_mb = round(usage / _BYTES_PER_MB, 2)
        await errors.guarded(
            self._ctx.store.set({keys.PENDING_CACHE: pending_mb}),
            log=log,
            action="Update pending cache",
            fallback=None,
        )
        cache = self._ctx.cache
        new_mb = pending_mb - cache.last_cache_estimate_mb.get(hostname, 0.0)
        if new_mb > 0:
            await site_stats.record_site_stat(self._ctx, hostname, "cache", new_mb)
        cache.last_cache_estimate_mb[hostname] = pending_mb

    # ==========================================================================
    # Removal
    # ==========================================================================

    async def _pop_tab_url(self, tab_id: int) -> str | None:
        async def _pop() -> str | None:
            stored = await self._ctx.store.get([keys.TAB_URLS])
            tab_urls = stored.get(keys.TAB_URLS) or {}
            url = tab_urls.pop(str(tab_id), None)
            if url is not None:
                await self._ctx.store.set({keys.TAB_URLS: tab_urls})
            return url

        return await errors.guarded(_pop(), log=log, action="Pop tab URL", fallback=None, data={"tabId": tab_id})

    async def on_removal(self, tab_id: int) -> CleanupOutcome | None:
        """Apply the active profile to the site a closed tab was showing.

        Returns:
            What was done, or ``None`` when the removal was a no-op.
        """
        url = await self._pop_tab_url(tab_id)
        if not url:
            return None

        ctx = self._ctx
        state = await load_cleanup_state(ctx)
        if state.paused:
            log.debug("Cleanup paused, skipping tab", {"tabId": tab_id})
            return None

        try:
            hostname = url_mod.extract_hostname(url)
        except errors.MalformedInputError as exc:
            log.debug("Ignoring removal", {"tabId": tab_id, "error": str(exc)})
            return None

        skip_cookies = state.is_cookie_whitelisted(hostname)
        skip_cache = state.is_trusted(hostname)
        if skip_cookies and skip_cache:
            log.debug("Site whitelisted and trusted, nothing to clean", {"hostname": hostname})
            return None

        profile = state.profile
        outcome = CleanupOutcome(hostname=hostname, profile=state.profile_name)
        if profile.is_noop:
            log.debug("Profile has nothing to clean", {"hostname": hostname, "profile": state.profile_name})
            return outcome
        log.start_timer(f"cleanup:{tab_id}")

        if profile.wants_storage_cleanup:
            outcome.storage_requested = True
            await errors.guarded(
                ctx.collaborators.injector.execute(tab_id, profile.storage_payload()),
                log=log,
                action="Page storage cleanup",
                fallback=None,
                data={"tabId": tab_id, "hostname": hostname},
            )

        if profile.delete_cookies and not skip_cookies:
            site_cookies = await self._site_cookies(hostname)
            if site_cookies is not None:
                outcome.cookies_deleted = await self._delete_site_cookies(site_cookies, state.whitelist)
                await errors.guarded(
                    history.record_cookie_cleanup(ctx, hostname, outcome.cookies_deleted, tally_daily=True),
                    log=log,
                    action="Record cookie cleanup",
                    fallback=None,
                )

        if profile.clear_cache and not skip_cache:
            outcome.cache_cleared_mb = await self._clear_site_cache(hostname)

        log.end_timer(f"cleanup:{tab_id}", "Tab cleanup finished")
        log.info(
            "Tab cleanup",
            {
                "hostname": hostname,
                "profile": state.profile_name,
                "storage": outcome.storage_requested,
                "cookiesDeleted": outcome.cookies_deleted,
                "cacheClearedMB": outcome.cache_cleared_mb,
            },
        )
        self._publisher.request_update()
        return outcome

    async def _clear_site_cache(self, hostname: str) -> float | None:
        ctx = self._ctx
        stored = await errors.guarded(ctx.store.get([keys.PENDING_CACHE]), log=log, action="Read pending cache", fallback={})
        try:
            pending_mb = float(stored.get(keys.PENDING_CACHE) or 0)
        except (TypeError, ValueError):
            pending_mb = 0.0
        try:
            await ctx.collaborators.site_data.clear(origins=url_mod.site_origins(hostname), cache=True)
        except Exception as exc:
            log.warn("Cache clear failed", {"hostname": hostname, "error": errors.get_error_message(exc)})
            return None
        await errors.guarded(
            history.record_cache_cleanup(ctx, hostname, pending_mb),
            log=log,
            action="Record cache cleanup",
            fallback=None,
        )
        return pending_mb

    # ==========================================================================
    # Cookie deletion
    # ==========================================================================

    async def _delete_cookie(self, cookie: cleanup.BrowserCookie) -> bool:
        target = url_mod.cookie_url(cookie.domain, cookie.path, secure=cookie.secure)
        try:
            return bool(await self._ctx.collaborators.cookies.remove(target, cookie.name))
        except Exception as exc:
            log.warn("Cookie removal failed", {"name": cookie.name, "url": target, "error": errors.get_error_message(exc)})
            return False

    async def _delete_site_cookies(self, site_cookies: list[cleanup.BrowserCookie], whitelist: Sequence[str]) -> int:
        """Delete every eligible cookie and count categories of those removed."""
        to_delete = cookie_rules.select_for_deletion(site_cookies, whitelist, self._category_rules)
        if not to_delete:
            return 0
        results = await asyncio.gather(*(self._delete_cookie(c) for c in to_delete))
        removed = [c for c, ok in zip(to_delete, results, strict=True) if ok]
        await errors.guarded(
            history.count_categories(self._ctx, (cookie_rules.categorize_cookie(c.name, self._category_rules) for c in removed)),
            log=log,
            action="Count cookie categories",
            fallback=None,
        )
        return len(removed)

    # ==========================================================================
    # Manual purge
    # ==========================================================================

    async def manual_clear(self) -> dict[str, Any]:
        """Purge all cookies and cache, outside the profile system."""
        ctx = self._ctx
        collaborators = ctx.collaborators
        log.start_timer("manual-clear")
        before = await errors.guarded(collaborators.estimator.estimate_bytes(), log=log, action="Estimate storage", fallback=0)
        all_cookies = await errors.guarded(collaborators.cookies.get_all(), log=log, action="List cookies", fallback=[])
        try:
            await collaborators.site_data.clear(origins=None, cookies=True, cache=True)
        except Exception as exc:
            message = errors.get_error_message(exc)
            log.error("Manual cleanup failed", {"error": message})
            return {"ok": False, "error": message}

        after = await errors.guarded(collaborators.estimator.estimate_bytes(), log=log, action="Estimate storage", fallback=0)
        cleared_mb = round(max(0, before - after) / _BYTES_PER_MB, 2)
        await errors.guarded(
            history.record_manual_cleanup(ctx, len(all_cookies), cleared_mb),
            log=log,
            action="Record manual cleanup",
            fallback=None,
        )
        ctx.cache.last_cookie_count.clear()
        ctx.cache.last_cache_estimate_mb.clear()
        log.end_timer("manual-clear", "Manual cleanup complete")
        self._publisher.request_update()
        return {"ok": True, "status": "Manual cleanup complete"}
