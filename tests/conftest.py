"""Shared fixtures for the test suite.

Every host collaborator has an in-memory fake here that records
its calls and can be told to fail.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from cleantrail.config import EngineSettings
from cleantrail.data import loader
from cleantrail.engine.context import Clock, Collaborators, EngineContext
from cleantrail.engine.engine import PrivacyEngine
from cleantrail.models import cleanup, trackers
from cleantrail.scoring import publisher as score_publisher
from cleantrail.store import local_store

NOW_MS = 1_767_225_600_000  # 2026-01-01T00:00:00Z
DEBOUNCE_MS = 10


# ── Clock ──────────────────────────────────────────────────────


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now_ms: int = NOW_MS) -> None:
        self.now = now_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# ── Collaborator fakes ─────────────────────────────────────────


class FakeRuleEngine:
    def __init__(self) -> None:
        self.installed: dict[int, trackers.BlockRule] = {}
        self.calls: list[tuple[list[int], list[int]]] = []
        self.listeners: list[Any] = []
        self.fail = False

    async def install_rules(self, add: list[trackers.BlockRule], remove: list[int]) -> None:
        self.calls.append(([r.id for r in add], list(remove)))
        if self.fail:
            raise RuntimeError("rule engine unavailable")
        remaining = {rid: rule for rid, rule in self.installed.items() if rid not in set(remove)}
        for rule in add:
            if rule.id in remaining:
                raise ValueError(f"duplicate rule id {rule.id}")
            remaining[rule.id] = rule
        self.installed = remaining

    def on_match(self, listener: Any) -> None:
        self.listeners.append(listener)

    @property
    def domains(self) -> set[str]:
        return {rule.match_pattern[2:-1] for rule in self.installed.values()}


class FakeCookieStore:
    def __init__(self, cookies: list[cleanup.BrowserCookie] | None = None) -> None:
        self.cookies = list(cookies or [])
        self.removed: list[tuple[str, str]] = []
        self.fail_list = False

    async def get_all(self, domain: str | None = None) -> list[cleanup.BrowserCookie]:
        if self.fail_list:
            raise RuntimeError("cookie store unavailable")
        return list(self.cookies)

    async def remove(self, url: str, name: str) -> bool:
        self.removed.append((url, name))
        before = len(self.cookies)
        self.cookies = [c for c in self.cookies if not (c.name == name and c.domain.lstrip(".") in url)]
        return len(self.cookies) < before


class FakeSiteData:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail = False

    async def clear(self, *, origins: list[str] | None, cookies: bool = False, cache: bool = False) -> None:
        self.calls.append({"origins": origins, "cookies": cookies, "cache": cache})
        if self.fail:
            raise RuntimeError("clear failed")


class FakeInjector:
    def __init__(self) -> None:
        self.calls: list[tuple[int, cleanup.StorageCleanupRequest]] = []
        self.fail = False

    async def execute(self, tab_id: int, payload: cleanup.StorageCleanupRequest) -> None:
        self.calls.append((tab_id, payload))
        if self.fail:
            raise RuntimeError("tab already closed")


class FakeEstimator:
    def __init__(self, usage: int = 0) -> None:
        self.usage = usage
        self.fail = False

    async def estimate_bytes(self) -> int:
        if self.fail:
            raise RuntimeError("estimate unavailable")
        return self.usage


class FakeBadge:
    def __init__(self) -> None:
        self.updates: list[tuple[str, str]] = []

    async def set_badge(self, text: str, colour: str) -> None:
        self.updates.append((text, colour))


class FakeBroadcaster:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def broadcast(self, event: Mapping[str, Any]) -> None:
        self.events.append(dict(event))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e.get("type") == event_type]


def cookie(name: str, domain: str = "example.com", **kwargs: Any) -> cleanup.BrowserCookie:
    return cleanup.BrowserCookie(name=name, domain=domain, **kwargs)


async def settle(publisher: score_publisher.ScorePublisher) -> None:
    """Let the debounce window elapse and any publish finish."""
    await asyncio.sleep(DEBOUNCE_MS * 5 / 1000)
    await publisher.wait_idle()


# ── Fixtures ───────────────────────────────────────────────────


@pytest.fixture()
def settings() -> EngineSettings:
    return EngineSettings(score_debounce_ms=DEBOUNCE_MS)


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def store() -> local_store.MemoryStateStore:
    return local_store.MemoryStateStore()


@pytest.fixture()
def collaborators(store: local_store.MemoryStateStore) -> Collaborators:
    return Collaborators(
        store=store,
        rule_engine=FakeRuleEngine(),
        cookies=FakeCookieStore(),
        site_data=FakeSiteData(),
        injector=FakeInjector(),
        estimator=FakeEstimator(),
        badge=FakeBadge(),
        broadcaster=FakeBroadcaster(),
    )


@pytest.fixture()
def ctx(settings: EngineSettings, collaborators: Collaborators, clock: FixedClock) -> EngineContext:
    return EngineContext(settings=settings, collaborators=collaborators, clock=clock)


@pytest.fixture()
def publisher(ctx: EngineContext) -> score_publisher.ScorePublisher:
    return score_publisher.ScorePublisher(ctx)


@pytest.fixture()
def bundles(settings: EngineSettings) -> loader.BundleLoader:
    return loader.BundleLoader(settings.bundle_dir)


@pytest.fixture()
def engine(collaborators: Collaborators, settings: EngineSettings, clock: FixedClock) -> PrivacyEngine:
    return PrivacyEngine(collaborators, settings, clock=clock)
