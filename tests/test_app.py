"""Tests for the HTTP surface, using an engine wired to in-memory fakes."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from conftest import DEBOUNCE_MS, FakeCookieStore, FakeEstimator, FakeInjector, FakeRuleEngine, FakeSiteData
from fastapi.testclient import TestClient

from cleantrail import app as app_module
from cleantrail.api import events as api_events
from cleantrail.config import EngineSettings
from cleantrail.engine.context import Collaborators
from cleantrail.engine.engine import PrivacyEngine
from cleantrail.store import keys, local_store


async def _fake_runtime(settings: EngineSettings) -> app_module.Runtime:
    hub = api_events.EventHub()
    badge = api_events.MemoryBadge()
    engine = PrivacyEngine(
        Collaborators(
            store=local_store.MemoryStateStore(),
            rule_engine=FakeRuleEngine(),
            cookies=FakeCookieStore(),
            site_data=FakeSiteData(),
            injector=FakeInjector(),
            estimator=FakeEstimator(),
            badge=badge,
            broadcaster=hub,
        ),
        settings,
    )
    await engine.start()
    return app_module.Runtime(engine=engine, hub=hub, badge=badge)


@pytest.fixture()
def client() -> Iterator[TestClient]:
    application = app_module.create_app(_fake_runtime, EngineSettings(score_debounce_ms=DEBOUNCE_MS))
    with TestClient(application) as test_client:
        yield test_client


def _runtime(client: TestClient) -> app_module.Runtime:
    return client.app.state.runtime  # type: ignore[attr-defined]


class TestPrivacyScoreEndpoint:
    def test_initial_score(self, client: TestClient) -> None:
        response = client.get("/api/privacy-score")
        assert response.status_code == 200
        body = response.json()
        assert body["type"] == "privacyScoreUpdated"
        assert body["rawScore"] == 100
        assert body["letter"] == "A+"
        assert set(body["badge"]) == {"text", "colour"}


class TestTrackerEndpoints:
    def test_tracker_stats_empty(self, client: TestClient) -> None:
        assert client.get("/api/tracker-stats").json() == {"blockedTrackers": {}, "pendingTrackers": {}}

    def test_toggle_blocking(self, client: TestClient) -> None:
        response = client.post("/api/tracker-blocking", json={"enabled": False})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "enforced": 0}
        assert len(_runtime(client).engine.rules.active) == 0

    def test_toggle_requires_body(self, client: TestClient) -> None:
        assert client.post("/api/tracker-blocking", json={}).status_code == 422


class TestCleanupEndpoints:
    def test_manual_clear(self, client: TestClient) -> None:
        response = client.post("/api/manual-clear")
        assert response.json() == {"ok": True, "status": "Manual cleanup complete"}

    def test_manual_clear_failure(self, client: TestClient) -> None:
        _runtime(client).engine.ctx.collaborators.site_data.fail = True  # type: ignore[attr-defined]
        response = client.post("/api/manual-clear")
        assert response.status_code == 500
        assert response.json()["detail"] == "clear failed"


class TestProfileEndpoints:
    def test_set_profile_persists(self, client: TestClient) -> None:
        response = client.post("/api/profile", json={"profile": "paranoid"})
        assert response.json() == {"ok": True, "profile": "paranoid", "source": "manual"}
        store = _runtime(client).engine.ctx.store
        assert store.snapshot()[keys.ACTIVE_PROFILE] == "paranoid"  # type: ignore[attr-defined]

    def test_reset_source(self, client: TestClient) -> None:
        client.post("/api/profile", json={"profile": "strict"})
        assert client.delete("/api/profile/source").json() == {"ok": True}
        store = _runtime(client).engine.ctx.store
        assert keys.PROFILE_SOURCE not in store.snapshot()  # type: ignore[attr-defined]


class TestDiagnosticsEndpoint:
    def test_lines_returned(self, client: TestClient) -> None:
        lines = client.get("/api/diagnostics").json()["lines"]
        assert any("CleanTrail Server Started" in line for line in lines)
