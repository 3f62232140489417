"""
Explicit context objects passed to every handler.

``Collaborators`` bundles the host capabilities; ``AdvisoryCache``
holds the few in-memory values the engine keeps between events.
The cache is never authoritative: handlers re-read the store at
the start of each event and only use the cache for deltas.
"""

from __future__ import annotations

import dataclasses
import time
from datetime import UTC, datetime

from cleantrail.config import EngineSettings
from cleantrail.host import protocols
from cleantrail.models import trackers


class Clock:
    """Wall-clock source, injectable for deterministic tests."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def iso_now(self) -> str:
        return datetime.fromtimestamp(self.now_ms() / 1000, UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclasses.dataclass
class Collaborators:
    """Host capabilities the engine drives."""

    store: protocols.StateStore
    rule_engine: protocols.RuleEngine
    cookies: protocols.CookieStore
    site_data: protocols.SiteDataClearer
    injector: protocols.ScriptInjector
    estimator: protocols.StorageEstimator
    badge: protocols.BadgeIndicator
    broadcaster: protocols.EventBroadcaster


@dataclasses.dataclass
class AdvisoryCache:
    """Short-lived in-memory state; reconciled against the store, never trusted over it."""

    enforced: trackers.ActiveRuleSet = dataclasses.field(default_factory=trackers.ActiveRuleSet)
    last_cookie_count: dict[str, int] = dataclasses.field(default_factory=dict)
    last_cache_estimate_mb: dict[str, float] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class EngineContext:
    """Everything a handler needs, passed explicitly instead of module globals."""

    settings: EngineSettings
    collaborators: Collaborators
    clock: Clock = dataclasses.field(default_factory=Clock)
    cache: AdvisoryCache = dataclasses.field(default_factory=AdvisoryCache)

    @property
    def store(self) -> protocols.StateStore:
        return self.collaborators.store
