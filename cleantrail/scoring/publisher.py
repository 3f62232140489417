"""Debounced privacy score publication.

The engine routes store change notifications to the publisher; when
any score input key changes it arms a single-slot debounce timer.
When the timer fires it re-reads every input key, recomputes the
grade, updates the badge, and broadcasts ``privacyScoreUpdated``.
Producers never call the publisher directly for store-driven
updates; ``request_update`` exists for events that do not touch a
score input key.
"""

from __future__ import annotations

from typing import Any

from cleantrail.engine.context import EngineContext
from cleantrail.models import stats, trackers
from cleantrail.scoring import aggregate
from cleantrail.store import keys
from cleantrail.utils import debounce, errors, logger, serialization

log = logger.create_logger("ScorePublisher")


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class ScorePublisher:
    """Recomputes and republishes the privacy score on store changes."""

    def __init__(self, ctx: EngineContext) -> None:
        self._ctx = ctx
        self._debouncer = debounce.Debouncer(ctx.settings.debounce_seconds, self.publish_now, name="privacy-score")
        self.publish_count = 0

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def on_store_change(self, changed: frozenset[str], area: str) -> None:
        if area != keys.LOCAL_AREA:
            return
        if changed & keys.SCORE_INPUT_KEYS:
            self._debouncer.schedule()

    def request_update(self) -> None:
        """Arm the debounce timer without a store change."""
        self._debouncer.schedule()

    async def wait_idle(self) -> None:
        await self._debouncer.wait_idle()

    async def flush(self) -> None:
        """Publish a pending update now instead of waiting for the timer."""
        if self._debouncer.pending:
            await self._debouncer.flush()

    async def compute(self) -> stats.PrivacyScoreUpdated:
        """Read every input key fresh and build the score event."""
        ctx = self._ctx
        stored = await ctx.store.get(sorted(keys.SCORE_INPUT_KEYS))
        site_stats = serialization.load_records(stored.get(keys.SITE_STATS), stats.SiteStat)
        pending = serialization.load_records(stored.get(keys.PENDING_TRACKERS), trackers.PendingTrackerRecord)
        blocked = serialization.load_records(stored.get(keys.BLOCKED_TRACKERS), trackers.TrackerRecord)

        totals = aggregate.aggregate(site_stats, ctx.clock.now_ms(), ctx.settings.half_life_ms)
        score = aggregate.grade(totals, ctx.settings.grading)
        return stats.PrivacyScoreUpdated(
            raw_score=round(score),
            letter=aggregate.letter(score, ctx.settings.grading),
            cookies=stats.PendingCount(pending=_number(stored.get(keys.PENDING_COOKIES))),
            cache=stats.PendingCount(pending=_number(stored.get(keys.PENDING_CACHE))),
            trackers=stats.TrackerCounts(pending=len(pending), blocked=len(blocked)),
            aggregate=totals,
        )

    async def current_score(self) -> stats.PrivacyScore:
        """Answer a ``getPrivacyScore`` request without publishing."""
        event = await self.compute()
        return stats.PrivacyScore(raw_score=event.raw_score, letter=event.letter, aggregate=event.aggregate)

    async def publish_now(self) -> None:
        """Recompute, update the badge, and broadcast the score event."""
        ctx = self._ctx
        try:
            event = await self.compute()
        except Exception as exc:
            log.warn("Score recompute failed", {"error": errors.get_error_message(exc)})
            return

        colour = aggregate.badge_colour(event.letter, ctx.settings.grading)
        await errors.guarded(
            ctx.collaborators.badge.set_badge(event.letter, colour),
            log=log,
            action="Badge update",
            fallback=None,
        )
        await errors.guarded(
            ctx.collaborators.broadcaster.broadcast(serialization.dump_record(event)),
            log=log,
            action="Score broadcast",
            fallback=None,
        )
        self.publish_count += 1
        log.debug("Privacy score published", {"rawScore": event.raw_score, "letter": event.letter})
