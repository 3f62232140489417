"""Pydantic models for per-site statistics and the published privacy score."""

from __future__ import annotations

from typing import Literal

import pydantic

from cleantrail.utils.serialization import snake_to_camel

SiteStatField = Literal["cookies", "cache", "trackers", "fingerprints"]


class SiteStat(pydantic.BaseModel):
    """Raw running totals for one hostname.

    Values are never decayed at write time; decay is applied when
    the aggregate is computed, so concurrent writers only ever add.
    """

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    cookies: float = 0.0
    cache: float = 0.0
    trackers: float = 0.0
    fingerprints: float = 0.0
    last_seen: int = 0

    @pydantic.model_validator(mode="before")
    @classmethod
    def _accept_legacy_last_seen(cls, data: object) -> object:
        # Older stores wrote ``lastSeenTime``.
        if isinstance(data, dict) and "lastSeen" not in data and "lastSeenTime" in data:
            data = {**data, "lastSeen": data["lastSeenTime"]}
        return data


class Aggregate(pydantic.BaseModel):
    """Decay-weighted totals across every observed site."""

    cookies: float = 0.0
    cache: float = 0.0
    trackers: float = 0.0
    fingerprints: float = 0.0


class PrivacyScore(pydantic.BaseModel):
    """Answer to a ``getPrivacyScore`` request."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    raw_score: int
    letter: str
    aggregate: Aggregate


class PendingCount(pydantic.BaseModel):
    pending: float = 0


class TrackerCounts(pydantic.BaseModel):
    pending: int = 0
    blocked: int = 0


class PrivacyScoreUpdated(pydantic.BaseModel):
    """Event broadcast after each debounced score recomputation."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    type: Literal["privacyScoreUpdated"] = "privacyScoreUpdated"
    raw_score: int
    letter: str
    cookies: PendingCount
    cache: PendingCount
    trackers: TrackerCounts
    aggregate: Aggregate


class FingerprintAlert(pydantic.BaseModel):
    """A fingerprinting API call reported by the page-side detector."""

    t: int
    hostname: str
    note: str = "fingerprinting detected"
