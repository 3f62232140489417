"""
Privacy engine: wires the rule set manager, score publisher and
cleanup orchestrator to the host collaborators.

Host events are dispatched to handlers registered per event type
(see ``cleantrail.engine.events``).  Each handler runs in isolation:
one that raises is logged and does not stop the others.  Requests
from the presentation layer arrive as plain ``{"type": ...}``
messages through :meth:`PrivacyEngine.handle_message`.
"""

from __future__ import annotations

import collections
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from cleantrail.blocking import rule_set
from cleantrail.cleanup import orchestrator, profiles
from cleantrail.config import EngineSettings, get_settings
from cleantrail.data import loader
from cleantrail.engine import events
from cleantrail.engine.context import Clock, Collaborators, EngineContext
from cleantrail.models import trackers
from cleantrail.scoring import publisher as score_publisher
from cleantrail.scoring import site_stats
from cleantrail.utils import errors, logger, serialization

log = logger.create_logger("Engine")

E = TypeVar("E")
Handler = Callable[[Any], Awaitable[None] | None]


class PrivacyEngine:
    """The privacy protection engine for one browser profile."""

    def __init__(
        self,
        collaborators: Collaborators,
        settings: EngineSettings | None = None,
        *,
        clock: Clock | None = None,
        bundles: loader.BundleLoader | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.ctx = EngineContext(settings=settings, collaborators=collaborators, clock=clock or Clock())
        self.bundles = bundles or loader.BundleLoader(settings.bundle_dir)
        self.publisher = score_publisher.ScorePublisher(self.ctx)
        self.rules = rule_set.RuleSetManager(self.ctx, self.bundles, self.publisher)
        self.cleanup = orchestrator.CleanupOrchestrator(self.ctx, self.publisher)
        self._handlers: dict[type, list[Handler]] = collections.defaultdict(list)
        self._attached = False

        self.register(events.Navigation, self._handle_navigation)
        self.register(events.Removal, self._handle_removal)
        self.register(trackers.RuleMatch, self.rules.on_rule_match)
        self.register(events.StoreChange, self._handle_store_change)
        self.register(events.FingerprintDetected, self._handle_fingerprint)

    # ==========================================================================
    # Handler registry
    # ==========================================================================

    def register(self, event_type: type[E], handler: Callable[[E], Awaitable[None] | None]) -> None:
        """Add *handler* for events of exactly *event_type*."""
        self._handlers[event_type].append(handler)

    async def dispatch(self, event: object) -> None:
        """Run every handler registered for ``type(event)``."""
        handlers = self._handlers.get(type(event))
        if not handlers:
            log.debug("No handler for event", {"type": type(event).__name__})
            return
        for handler in list(handlers):
            try:
                result = handler(event)
                if result is not None:
                    await result
            except Exception as exc:
                log.error(
                    "Event handler failed",
                    {"event": type(event).__name__, "handler": getattr(handler, "__name__", repr(handler)), "error": errors.get_error_message(exc)},
                )

    async def _handle_navigation(self, event: events.Navigation) -> None:
        await self.cleanup.on_navigation(event.tab_id, event.url, active=event.active)

    async def _handle_removal(self, event: events.Removal) -> None:
        await self.cleanup.on_removal(event.tab_id)

    def _handle_store_change(self, event: events.StoreChange) -> None:
        self.publisher.on_store_change(event.keys, event.area)

    async def _handle_fingerprint(self, event: events.FingerprintDetected) -> None:
        await site_stats.record_fingerprint(self.ctx, event.url, event.api)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def attach(self) -> None:
        """Subscribe to store changes and rule matches (idempotent)."""
        if self._attached:
            return
        self._attached = True
        self.ctx.store.on_change(lambda changed, area: self.dispatch(events.StoreChange(keys=frozenset(changed), area=area)))
        self.ctx.collaborators.rule_engine.on_match(self.dispatch)

    async def start(self) -> None:
        """Load bundles, reconcile rules if blocking is on, publish a first score."""
        log.section("CleanTrail Engine Starting")
        log.start_timer("startup")
        self.attach()
        self.cleanup.set_category_rules(self.bundles.load_cookie_categories())
        if await self.rules.is_enabled():
            await self.rules.reload_from_bundle()
        else:
            await self.rules.teardown()
        self.publisher.request_update()
        log.end_timer("startup", "Engine ready")
        log.info("Enforced trackers", {"domains": len(self.rules.active)})

    async def stop(self) -> None:
        """Publish any pending score, then wait for runs in flight."""
        await self.publisher.flush()
        await self.publisher.wait_idle()

    # ==========================================================================
    # Messages from the presentation layer
    # ==========================================================================

    async def handle_message(self, message: Mapping[str, Any]) -> dict[str, Any] | None:
        """Answer a ``{"type": ...}`` request; unknown types return ``None``."""
        msg_type = message.get("type") if isinstance(message, Mapping) else None
        try:
            if msg_type == "getPrivacyScore":
                score = await self.publisher.current_score()
                return {"type": "privacyScoreUpdated", **serialization.dump_record(score)}
            if msg_type == "getTrackerStats":
                return await self.rules.get_tracker_stats()
            if msg_type == "setTrackerBlocking":
                active = await self.rules.set_enabled(bool(message.get("enabled")))
                return {"ok": True, "enforced": len(active)}
            if msg_type == "manualClear":
                return await self.cleanup.manual_clear()
            if msg_type == "fingerprintingDetected":
                await self.dispatch(events.FingerprintDetected(url=str(message.get("url") or ""), api=message.get("api")))
                return {"ok": True}
            if msg_type == "setActiveProfile":
                source = "auto" if message.get("source") == "auto" else "manual"
                name = await profiles.set_active_profile(self.ctx, str(message.get("profile") or ""), source)
                return {"ok": True, "profile": name, "source": source}
            if msg_type == "resetProfileSource":
                await profiles.reset_profile_source(self.ctx)
                return {"ok": True}
        except Exception as exc:
            log.error("Message handling failed", {"type": msg_type, "error": errors.get_error_message(exc)})
            return {"ok": False, "error": errors.get_error_message(exc)}
        log.debug("Unknown message type", {"type": msg_type})
        return None
