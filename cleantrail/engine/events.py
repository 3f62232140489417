"""Typed host events the engine dispatches to registered handlers."""

from __future__ import annotations

import dataclasses

from cleantrail.models.trackers import RuleMatch


@dataclasses.dataclass(frozen=True)
class Navigation:
    """A tab's URL changed (possibly mid-navigation)."""

    tab_id: int
    url: str | None
    active: bool = False


@dataclasses.dataclass(frozen=True)
class Removal:
    """A tab was closed."""

    tab_id: int


@dataclasses.dataclass(frozen=True)
class StoreChange:
    keys: frozenset[str]
    area: str


@dataclasses.dataclass(frozen=True)
class FingerprintDetected:
    """Output of the page-side fingerprinting detector."""

    url: str
    api: str | None = None


EngineEvent = Navigation | Removal | StoreChange | FingerprintDetected | RuleMatch

__all__ = ["EngineEvent", "FingerprintDetected", "Navigation", "Removal", "RuleMatch", "StoreChange"]
