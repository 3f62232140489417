"""Decay-weighted privacy score.

Three pure functions:

- :func:`aggregate` sums every site's raw totals, each scaled by
  ``exp(-age / half_life)`` so recent activity dominates.
- :func:`grade` turns the aggregate into a 0–100 score.
- :func:`letter` maps the score onto A+/A/B/C/D.

Weights and thresholds come from :class:`cleantrail.config.GradingPolicy`.
"""

from __future__ import annotations

import math
from collections.abc import Mapping

from cleantrail.config import GradingPolicy
from cleantrail.models import stats

_DEFAULT_POLICY = GradingPolicy()


def decay_weight(age_ms: float, half_life_ms: float) -> float:
    """Weight for a signal *age_ms* old; 1.0 at age zero."""
    return math.exp(-max(0.0, age_ms) / half_life_ms)


def aggregate(
    site_stats: Mapping[str, stats.SiteStat],
    now_ms: float,
    half_life_ms: float,
) -> stats.Aggregate:
    """Sum decay-weighted totals across all observed sites.

    Sites whose ``last_seen`` is zero have never been observed and
    contribute nothing.  A ``last_seen`` in the future is treated as
    age zero.

    Args:
        site_stats: Raw per-hostname totals.
        now_ms: Reference time in epoch milliseconds.
        half_life_ms: Decay constant in milliseconds.

    Returns:
        The four weighted components, all ``>= 0``.
    """
    cookies = cache = trackers = fingerprints = 0.0
    for stat in site_stats.values():
        if not stat.last_seen:
            continue
        weight = decay_weight(now_ms - stat.last_seen, half_life_ms)
        cookies += max(0.0, stat.cookies) * weight
        cache += max(0.0, stat.cache) * weight
        trackers += max(0.0, stat.trackers) * weight
        fingerprints += max(0.0, stat.fingerprints) * weight
    return stats.Aggregate(cookies=cookies, cache=cache, trackers=trackers, fingerprints=fingerprints)


def grade(totals: stats.Aggregate, policy: GradingPolicy = _DEFAULT_POLICY) -> float:
    """Score in ``[0, base_score]``: the base minus weighted penalties."""
    penalty = (
        totals.cookies * policy.cookie_weight
        + totals.cache * policy.cache_weight
        + totals.trackers * policy.tracker_weight
        + totals.fingerprints * policy.fingerprint_weight
    )
    return min(policy.base_score, max(0.0, policy.base_score - penalty))


def letter(score: float, policy: GradingPolicy = _DEFAULT_POLICY) -> str:
    """Letter grade; every threshold is a strict ``>``."""
    for threshold, grade_letter in policy.thresholds:
        if score > threshold:
            return grade_letter
    return policy.floor_letter


def badge_colour(grade_letter: str, policy: GradingPolicy = _DEFAULT_POLICY) -> str:
    return policy.badge_colours.get(grade_letter, policy.fallback_colour)
