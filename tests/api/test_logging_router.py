"""Tests for pgscope.api.routers.logging - runtime log-control endpoints.

Uses the full app factory with an in-memory sink so audit events can be
asserted on.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.authentication import AuthCredentials, AuthenticationBackend, SimpleUser
from starlette.middleware.authentication import AuthenticationMiddleware

from pgscope.api.app import create_app
from pgscope.framework.logging.config import build_observability
from pgscope.framework.logging.dispatcher import AUDIT, MemorySink


@pytest.fixture
def obs(settings, fake_collector):
    observability = build_observability(settings, sink=MemorySink(), collector=fake_collector, sync_stdlib=False)
    yield observability
    observability.shutdown()


@pytest.fixture
def client(obs):
    return TestClient(create_app(observability=obs, configure=False))


def audit_actions(obs) -> list[str]:
    return [r.fields["action"] for r in obs.dispatcher.sink.by_category(AUDIT)]


class TestConfig:
    """GET /logging/config tests."""

    def test_returns_levels(self, client):
        resp = client.get("/api/v1/logging/config")
        assert resp.status_code == 200
        data = resp.json()
        assert data["levels"]["ROOT"] == "INFO"
        assert data["levels"]["pgscope.SQL"] == "INFO"
        assert data["temporary_overrides"] == {}
        assert data["format"] == "plain"
        assert data["redaction_enabled"] is True

    def test_includes_resource_summary(self, client, fake_collector):
        resources = client.get("/api/v1/logging/config").json()["resources"]
        assert resources["heap_usage_percent"] == 10.0
        assert resources["thread_count"] == 10
        assert resources["uptime"] == "1h 2m 3s"
        assert fake_collector.calls == 1


class TestSetLevel:
    """PUT/GET/DELETE /logging/level/{name} tests."""

    def test_permanent_override(self, client, obs):
        resp = client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "debug"})
        assert resp.status_code == 200
        assert resp.json()["level"] == "DEBUG"
        assert resp.json()["expires_at"] is None

        resp = client.get("/api/v1/logging/level/pgscope.SQL")
        assert resp.json() == {"logger": "pgscope.SQL", "level": "DEBUG", "overridden": True, "expires_at": None}
        assert audit_actions(obs) == ["SET_LOG_LEVEL"]

    def test_temporary_override(self, client, obs):
        resp = client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "TRACE", "duration_minutes": 5})
        assert resp.status_code == 200
        assert resp.json()["expires_at"] is not None

        data = client.get("/api/v1/logging/config").json()
        assert "pgscope.SQL" in data["temporary_overrides"]
        assert data["levels"]["pgscope.SQL"] == "TRACE"

    def test_invalid_level_is_400(self, client, obs):
        resp = client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "LOUD"})
        assert resp.status_code == 400
        assert resp.json()["title"] == "InvalidLevelError"
        assert obs.levels.get_level("pgscope.SQL").name == "INFO"
        assert audit_actions(obs) == []

    def test_non_positive_duration_rejected(self, client):
        resp = client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "DEBUG", "duration_minutes": 0})
        assert resp.status_code == 422

    def test_revert(self, client, obs):
        client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "ERROR"})
        resp = client.delete("/api/v1/logging/level/pgscope.SQL")
        assert resp.status_code == 200
        assert resp.json()["level"] == "INFO"
        assert audit_actions(obs) == ["SET_LOG_LEVEL", "REVERT_LOG_LEVEL"]

    def test_get_unknown_logger_inherits(self, client):
        resp = client.get("/api/v1/logging/level/some.other.logger")
        assert resp.json()["level"] == "INFO"
        assert resp.json()["overridden"] is False


class TestPresets:
    """POST /logging/preset/{preset} and GET /logging/presets tests."""

    def test_apply_to_logger(self, client, obs):
        resp = client.post("/api/v1/logging/preset/verbose", params={"logger": "pgscope.SQL"})
        assert resp.status_code == 200
        assert resp.json()["level"] == "DEBUG"
        assert obs.levels.get_level("pgscope.SQL").name == "DEBUG"
        assert audit_actions(obs) == ["APPLY_LOG_PRESET"]

    def test_apply_to_root(self, client, obs):
        client.post("/api/v1/logging/preset/MINIMAL")
        assert obs.levels.get_level("anything").name == "WARN"

    def test_unknown_preset_is_400(self, client):
        resp = client.post("/api/v1/logging/preset/LOUD")
        assert resp.status_code == 400
        assert resp.json()["title"] == "InvalidPresetError"

    def test_list(self, client):
        resp = client.get("/api/v1/logging/presets")
        assert resp.status_code == 200
        by_name = {p["name"]: p["level"] for p in resp.json()}
        assert by_name == {"MINIMAL": "WARN", "STANDARD": "INFO", "VERBOSE": "DEBUG", "DEBUG": "TRACE"}


class TestDebugMode:
    """POST/DELETE /logging/debug tests."""

    def test_enable_and_disable(self, client, obs):
        resp = client.post("/api/v1/logging/debug", params={"duration": 1})
        assert resp.status_code == 200
        assert resp.json()["level"] == "TRACE"
        assert resp.json()["expires_at"] is not None
        assert obs.levels.get_level("pgscope.SQL").name == "TRACE"

        resp = client.delete("/api/v1/logging/debug")
        assert resp.json()["level"] == "INFO"
        assert audit_actions(obs) == ["ENABLE_DEBUG_MODE", "DISABLE_DEBUG_MODE"]

    def test_default_duration(self, client, obs):
        client.post("/api/v1/logging/debug")
        assert "pgscope" in obs.levels.get_temporary_expiry()


class TestCreateApp:
    def test_routes_registered(self, client):
        paths = [r.path for r in client.app.routes]
        assert "/api/v1/logging/config" in paths
        assert "/api/v1/logging/level/{name}" in paths

    def test_state(self, client, obs):
        assert client.app.state.observability is obs


class StaticUserBackend(AuthenticationBackend):
    async def authenticate(self, conn):
        return AuthCredentials(["authenticated"]), SimpleUser("alice")


class TestAuditActor:
    def test_anonymous_actor(self, client, obs):
        client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "DEBUG"})
        assert obs.dispatcher.sink.by_category(AUDIT)[0].fields["user"] == "anonymous"

    def test_authenticated_actor(self, obs):
        app = create_app(observability=obs, configure=False)
        app.add_middleware(AuthenticationMiddleware, backend=StaticUserBackend())
        client = TestClient(app)

        client.put("/api/v1/logging/level/pgscope.SQL", json={"level": "DEBUG"})

        assert obs.dispatcher.sink.by_category(AUDIT)[0].fields["user"] == "alice"
