"""Rule set reconciliation and tracker statistics.

Translates the approved tracker list into block rules, keeps the
enforced-domain cache equal to what is installed, and turns rule
match events into tracker statistics.

Rule ids are ``rule_id_base + index`` over the sorted approved list,
so an unchanged list always yields the same rules and a repeat
reconcile is a no-op at the rule engine.  The engine owns the whole
``[rule_id_base, rule_id_base + rule_id_range)`` range; teardown
removes all of it so nothing installed by an earlier process run is
left behind.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from cleantrail.data import loader
from cleantrail.engine.context import EngineContext
from cleantrail.models import trackers
from cleantrail.scoring import publisher as score_publisher
from cleantrail.store import keys
from cleantrail.utils import errors, logger, serialization
from cleantrail.utils import url as url_mod

log = logger.create_logger("RuleSet")

DEFAULT_MATCH_CATEGORIES = ["tracking"]


class RuleSetManager:
    """Owns the engine's block rules and the tracker statistics they produce."""

    def __init__(
        self,
        ctx: EngineContext,
        bundles: loader.BundleLoader,
        publisher: score_publisher.ScorePublisher,
    ) -> None:
        self._ctx = ctx
        self._bundles = bundles
        self._publisher = publisher
        # False until the reserved range has been cleared once by this process.
        self._range_synced = False
        self._categories: dict[str, str] = {}

    @property
    def active(self) -> trackers.ActiveRuleSet:
        return self._ctx.cache.enforced

    # ==========================================================================
    # Reconciliation
    # ==========================================================================

    def _plan(self, approved: Iterable[str]) -> dict[str, int]:
        settings = self._ctx.settings
        domains = sorted({d.strip().lower() for d in approved if d and d.strip()})
        if len(domains) > settings.rule_id_range:
            log.warn(
                "Approved list exceeds reserved rule range, truncating",
                {"domains": len(domains), "range": settings.rule_id_range},
            )
            domains = domains[: settings.rule_id_range]
        return {domain: settings.rule_id_base + i for i, domain in enumerate(domains)}

    async def reconcile(self, approved: Iterable[str]) -> trackers.ActiveRuleSet:
        """Make the installed rules match *approved* exactly.

        Only rules whose id or domain changed are sent to the rule
        engine.  On install failure the enforced set stays what it
        was before the call.
        """
        desired = self._plan(approved)
        if not desired:
            await self.teardown()
            return self.active

        current = self.active.rule_ids
        if self._range_synced and desired == current:
            log.debug("Rule set unchanged", {"domains": len(desired)})
            return self.active

        settings = self._ctx.settings
        old_by_id = {rule_id: domain for domain, rule_id in current.items()}
        new_by_id = {rule_id: domain for domain, rule_id in desired.items()}
        changed_ids = sorted(rid for rid, domain in new_by_id.items() if old_by_id.get(rid) != domain)

        if self._range_synced:
            remove = sorted({rid for rid in old_by_id if new_by_id.get(rid) != old_by_id[rid]})
        else:
            remove = settings.reserved_rule_ids()
        add = [
            trackers.BlockRule.for_domain(
                rid,
                new_by_id[rid],
                priority=settings.rule_priority,
                resource_types=settings.rule_resource_types,
            )
            for rid in changed_ids
        ]

        try:
            await self._ctx.collaborators.rule_engine.install_rules(add, remove)
        except Exception as exc:
            log.error(
                "Rule install failed, keeping previous enforced set",
                {"add": len(add), "remove": len(remove), "enforced": len(current), "error": errors.get_error_message(exc)},
            )
            return self.active

        self._range_synced = True
        self._ctx.cache.enforced = trackers.ActiveRuleSet(rule_ids=desired)
        log.success("Rule set reconciled", {"enforced": len(desired), "added": len(add), "removed": len(remove)})
        return self.active

    async def teardown(self) -> None:
        """Remove every rule in the reserved range and forget the enforced set."""
        self._ctx.cache.enforced = trackers.ActiveRuleSet()
        try:
            await self._ctx.collaborators.rule_engine.install_rules([], self._ctx.settings.reserved_rule_ids())
        except Exception as exc:
            log.error("Rule teardown failed", {"error": errors.get_error_message(exc)})
            # Rules may still be installed; the next reconcile clears the whole range.
            self._range_synced = False
            return
        self._range_synced = True
        log.info("Rule set cleared")

    async def reload_from_bundle(self) -> trackers.ActiveRuleSet:
        """Reconcile against the packaged approved list as it is now.

        A missing or invalid bundle tears down every rule rather than
        leaving the previous ones in place.
        """
        try:
            approved = self._bundles.load_approved_domains()
        except loader.BundleLoadError as exc:
            log.warn("Approved tracker bundle unavailable, clearing rules", {"error": str(exc)})
            self._categories = {}
            await self.teardown()
            return self.active

        self._categories = {domain: str(meta["category"]) for domain, meta in approved.items() if meta.get("category")}
        return await self.reconcile(approved)

    # ==========================================================================
    # Enable / disable
    # ==========================================================================

    async def is_enabled(self) -> bool:
        stored = await errors.guarded(
            self._ctx.store.get([keys.TRACKER_BLOCKING_ENABLED]),
            log=log,
            action="Read blocking flag",
            fallback={},
        )
        value = stored.get(keys.TRACKER_BLOCKING_ENABLED)
        return value if isinstance(value, bool) else True

    async def set_enabled(self, enabled: bool) -> trackers.ActiveRuleSet:
        """Persist the blocking flag and tear down or rebuild the rule set."""
        await errors.guarded(
            self._ctx.store.set({keys.TRACKER_BLOCKING_ENABLED: enabled}),
            log=log,
            action="Persist blocking flag",
            fallback=None,
        )
        if enabled:
            log.info("Tracker blocking enabled")
            return await self.reload_from_bundle()
        log.info("Tracker blocking disabled")
        await self.teardown()
        return self.active

    # ==========================================================================
    # Match handling
    # ==========================================================================

    async def on_rule_match(self, match: trackers.RuleMatch) -> None:
        """Update pending (always) and blocked (if enforced) statistics."""
        try:
            hostname = url_mod.extract_hostname(match.url)
        except errors.MalformedInputError as exc:
            log.debug("Ignoring rule match", {"error": str(exc)})
            return

        domain = url_mod.registrable_domain(hostname)
        enforced = domain in self.active
        now_ms = self._ctx.clock.now_ms()
        log.debug("Rule match", {"url": match.url, "ruleId": match.rule_id, "domain": domain, "enforced": enforced})

        try:
            stored = await self._ctx.store.get([keys.PENDING_TRACKERS, keys.BLOCKED_TRACKERS])
            pending = serialization.load_records(stored.get(keys.PENDING_TRACKERS), trackers.PendingTrackerRecord)
            record = pending.get(domain, trackers.PendingTrackerRecord())
            pending[domain] = record.record_observation(now_ms, match.categories or DEFAULT_MATCH_CATEGORIES)
            update: dict[str, Any] = {keys.PENDING_TRACKERS: serialization.dump_records(pending)}

            if enforced:
                blocked = serialization.load_records(stored.get(keys.BLOCKED_TRACKERS), trackers.TrackerRecord)
                record = blocked.get(domain, trackers.TrackerRecord(category=self._categories.get(domain)))
                blocked[domain] = record.record_block(now_ms, self._ctx.settings.time_saved_per_block_ms)
                update[keys.BLOCKED_TRACKERS] = serialization.dump_records(blocked)

            await self._ctx.store.set(update)
        except Exception as exc:
            log.warn("Failed to record rule match", {"domain": domain, "error": errors.get_error_message(exc)})
            return
        self._publisher.request_update()

    async def get_tracker_stats(self) -> dict[str, Any]:
        """Answer a ``getTrackerStats`` request from the store."""
        stored = await errors.guarded(
            self._ctx.store.get([keys.BLOCKED_TRACKERS, keys.PENDING_TRACKERS]),
            log=log,
            action="Read tracker stats",
            fallback={},
        )
        return {
            keys.BLOCKED_TRACKERS: stored.get(keys.BLOCKED_TRACKERS) or {},
            keys.PENDING_TRACKERS: stored.get(keys.PENDING_TRACKERS) or {},
        }
