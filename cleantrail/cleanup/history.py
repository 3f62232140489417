"""Deletion history and cleanup tallies.

History is newest first and capped at ``history_limit`` entries.
Daily tallies are keyed by the UTC date (``YYYY-MM-DD``) of the
cleanup.  Every function re-reads the keys it updates immediately
before writing them.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from cleantrail.engine.context import EngineContext
from cleantrail.models import cleanup
from cleantrail.store import keys
from cleantrail.utils import serialization


def prepend_entry(history: Sequence[Any], entry: cleanup.DeletionHistoryEntry, limit: int) -> list[Any]:
    """Return *history* with *entry* first, trimmed to *limit* entries."""
    existing = list(history) if isinstance(history, (list, tuple)) else []
    return [serialization.dump_record(entry), *existing][:limit]


def day_key(iso_time: str) -> str:
    return iso_time[:10]


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _add_to_tally(tally: Any, day: str, amount: float) -> dict[str, Any]:
    result = dict(tally) if isinstance(tally, dict) else {}
    result[day] = _number(result.get(day)) + amount
    return result


async def record_cookie_cleanup(
    ctx: EngineContext,
    hostname: str,
    deleted: int,
    *,
    tally_daily: bool,
) -> None:
    """Add *deleted* to the totals, log a history entry, reset ``pendingCookies``."""
    now = ctx.clock.iso_now()
    stored = await ctx.store.get([keys.TOTAL_COOKIES_DELETED, keys.DELETION_HISTORY, keys.DAILY_COOKIE_CLEARS])
    entry = cleanup.DeletionHistoryEntry(hostname=hostname, time=now, cookies_deleted=deleted, cache_cleared=False)
    update: dict[str, Any] = {
        keys.PENDING_COOKIES: 0,
        keys.TOTAL_COOKIES_DELETED: int(_number(stored.get(keys.TOTAL_COOKIES_DELETED))) + deleted,
        keys.DELETION_HISTORY: prepend_entry(stored.get(keys.DELETION_HISTORY) or [], entry, ctx.settings.history_limit),
    }
    if tally_daily:
        update[keys.DAILY_COOKIE_CLEARS] = _add_to_tally(stored.get(keys.DAILY_COOKIE_CLEARS), day_key(now), deleted)
    await ctx.store.set(update)


async def record_cache_cleanup(ctx: EngineContext, hostname: str, cleared_mb: float) -> None:
    """Add *cleared_mb* to the totals, log a history entry, reset ``pendingCache``."""
    now = ctx.clock.iso_now()
    stored = await ctx.store.get([keys.TOTAL_CACHE_CLEARED, keys.DELETION_HISTORY, keys.DAILY_CACHE_CLEARS])
    entry = cleanup.DeletionHistoryEntry(hostname=hostname, time=now, cache_cleared=True, cache_estimate_mb=cleared_mb)
    await ctx.store.set({
        keys.PENDING_CACHE: 0,
        keys.TOTAL_CACHE_CLEARED: _number(stored.get(keys.TOTAL_CACHE_CLEARED)) + cleared_mb,
        keys.DELETION_HISTORY: prepend_entry(stored.get(keys.DELETION_HISTORY) or [], entry, ctx.settings.history_limit),
        keys.DAILY_CACHE_CLEARS: _add_to_tally(stored.get(keys.DAILY_CACHE_CLEARS), day_key(now), cleared_mb),
    })


async def record_manual_cleanup(ctx: EngineContext, cookies_deleted: int, cleared_mb: float) -> None:
    now = ctx.clock.iso_now()
    stored = await ctx.store.get([keys.TOTAL_COOKIES_DELETED, keys.TOTAL_CACHE_CLEARED, keys.DELETION_HISTORY])
    entry = cleanup.DeletionHistoryEntry(
        hostname=cleanup.MANUAL_CLEANUP_HOSTNAME,
        time=now,
        cookies_deleted=cookies_deleted,
        cache_cleared=True,
        cache_estimate_mb=cleared_mb,
    )
    await ctx.store.set({
        keys.LAST_CLEANUP: now,
        keys.PENDING_COOKIES: 0,
        keys.PENDING_CACHE: 0,
        keys.TOTAL_COOKIES_DELETED: int(_number(stored.get(keys.TOTAL_COOKIES_DELETED))) + cookies_deleted,
        keys.TOTAL_CACHE_CLEARED: _number(stored.get(keys.TOTAL_CACHE_CLEARED)) + cleared_mb,
        keys.DELETION_HISTORY: prepend_entry(stored.get(keys.DELETION_HISTORY) or [], entry, ctx.settings.history_limit),
    })


async def count_categories(ctx: EngineContext, categories: Iterable[str]) -> None:
    """Increment ``cookieCategoryCounts`` once per deleted cookie."""
    batch = list(categories)
    if not batch:
        return
    stored = await ctx.store.get([keys.COOKIE_CATEGORY_COUNTS])
    counts = stored.get(keys.COOKIE_CATEGORY_COUNTS)
    counts = dict(counts) if isinstance(counts, dict) else {}
    for category in batch:
        counts[category] = int(_number(counts.get(category))) + 1
    await ctx.store.set({keys.COOKIE_CATEGORY_COUNTS: counts})
