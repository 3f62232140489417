"""
Collaborator interfaces consumed by the engine.

The engine never talks to a browser directly.  Each host capability
is a small ``typing.Protocol`` so production adapters (see
``cleantrail.host.playwright_host``) and test fakes can be swapped
freely.  Every method is a coroutine and may raise; callers wrap
them with ``cleantrail.utils.errors.guarded``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Protocol

from cleantrail.models import cleanup, trackers

ChangeListener = Callable[[frozenset[str], str], Awaitable[None] | None]
MatchListener = Callable[[trackers.RuleMatch], Awaitable[None] | None]


class StateStore(Protocol):
    """Asynchronous key-value store with change notifications."""

    async def get(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, items: Mapping[str, Any]) -> None: ...

    async def remove(self, keys: Iterable[str]) -> None: ...

    def on_change(self, listener: ChangeListener) -> None: ...


class RuleEngine(Protocol):
    """Network-layer rule enforcement."""

    async def install_rules(self, add: list[trackers.BlockRule], remove: list[int]) -> None: ...

    def on_match(self, listener: MatchListener) -> None: ...


class CookieStore(Protocol):
    async def get_all(self, domain: str | None = None) -> list[cleanup.BrowserCookie]: ...

    async def remove(self, url: str, name: str) -> bool: ...


class SiteDataClearer(Protocol):
    """Browsing-data removal scoped to origins or global."""

    async def clear(
        self,
        *,
        origins: list[str] | None,
        cookies: bool = False,
        cache: bool = False,
    ) -> None: ...


class ScriptInjector(Protocol):
    """Runs the storage cleanup payload inside a tab's page context."""

    async def execute(self, tab_id: int, payload: cleanup.StorageCleanupRequest) -> None: ...


class StorageEstimator(Protocol):
    async def estimate_bytes(self) -> int: ...


class BadgeIndicator(Protocol):
    """Compact visible indicator (text plus colour)."""

    async def set_badge(self, text: str, colour: str) -> None: ...


class EventBroadcaster(Protocol):
    """Fan-out of structured events to interested listeners."""

    async def broadcast(self, event: Mapping[str, Any]) -> None: ...
