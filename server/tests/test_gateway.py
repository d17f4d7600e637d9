"""Tests for the gateway routes."""

from __future__ import annotations

from unittest import mock

import pytest
from fastapi.testclient import TestClient

from conftest import DATABASE_ID, DEMO_EMAIL, TRACKING
from vox_demo.app import app
from vox_demo.app_state import GatewayState
from vox_demo.config import DemoConfig, config
from vox_demo.deps import get_admin_state, get_state
from vox_demo.services.backend import BackendError
from vox_demo.services.throttle import Throttle

GATEWAY_KEY = "test-gateway-key"
AUTH = {"Authorization": f"Bearer {GATEWAY_KEY}"}


@pytest.fixture
def gateway_state(backend):
    cfg = DemoConfig()
    cfg.api_key = "admin-key"
    cfg.database_id = DATABASE_ID
    cfg.tracking_collection = TRACKING
    cfg.demo_email = DEMO_EMAIL
    cfg.sweep_collections = ["posts"]

    gw = GatewayState(cfg)
    gw.throttle = Throttle.disabled()
    gw._admin = backend

    def jwt_client(jwt):
        backend.current_user = backend.users_by_email.get(jwt)
        return backend

    gw.jwt_client = jwt_client
    return gw


@pytest.fixture
def client(gateway_state):
    async def _state():
        return gateway_state

    app.dependency_overrides[get_state] = _state
    app.dependency_overrides[get_admin_state] = _state
    with mock.patch.object(config, "_gateway_api_key", GATEWAY_KEY):
        yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["adminKeyConfigured"] is True
        assert body["demoEmail"] == DEMO_EMAIL


class TestAuth:
    def test_admin_routes_require_key(self, client):
        assert client.post("/api/demo/cleanup").status_code == 401
        assert client.post("/api/demo/reset", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_missing_admin_key_is_503(self, backend):
        cfg = DemoConfig()
        cfg.api_key = None
        no_key = GatewayState(cfg)
        with mock.patch("vox_demo.deps.state", no_key), mock.patch.object(config, "_gateway_api_key", GATEWAY_KEY):
            resp = TestClient(app).post("/api/demo/setup-tracking", headers=AUTH)
        assert resp.status_code == 503


class TestResetPreferences:
    def test_requires_jwt(self, client):
        assert client.post("/api/demo/reset-preferences").status_code == 401

    def test_resets_demo_preferences(self, client, backend):
        user = backend.users_by_email[DEMO_EMAIL]
        user["prefs"] = {"theme": "dark", "followedAssociations": ["test_assoc_1"], "testPreference": 1}

        resp = client.post("/api/demo/reset-preferences", headers={"X-Appwrite-JWT": DEMO_EMAIL})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert user["prefs"] == {"followedAssociations": [], "theme": "light"}
        assert backend.closed

    def test_rejects_other_users(self, client, backend):
        user = backend.users_by_email["student@sjcem.edu.in"]
        user["prefs"] = {"theme": "dark"}

        resp = client.post("/api/demo/reset-preferences", headers={"X-Appwrite-JWT": "student@sjcem.edu.in"})

        assert resp.status_code == 403
        assert user["prefs"] == {"theme": "dark"}

    def test_invalid_jwt(self, client):
        resp = client.post("/api/demo/reset-preferences", headers={"X-Appwrite-JWT": "expired"})
        assert resp.status_code == 502

    def test_reset_failure(self, client, backend):
        backend.fail("update_prefs", BackendError("server error", code=500))
        resp = client.post("/api/demo/reset-preferences", headers={"X-Appwrite-JWT": DEMO_EMAIL})
        assert resp.status_code == 502


class TestAdminRoutes:
    def test_cleanup_uses_requested_retention(self, client, backend):
        backend.docs(TRACKING)["ancient"] = {
            "$id": "ancient", "changeType": "document", "userEmail": DEMO_EMAIL,
            "timestamp": "2020-01-01T00:00:00+00:00",
        }
        resp = client.post("/api/demo/cleanup", headers=AUTH, json={"retention_days": 3})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["report"]["deleted"] == 1
        assert backend.docs(TRACKING) == {}

    def test_cleanup_rejects_negative_retention(self, client):
        resp = client.post("/api/demo/cleanup", headers=AUTH, json={"retention_days": -1})
        assert resp.status_code == 422

    def test_reset(self, client, backend):
        user = backend.users_by_email[DEMO_EMAIL]
        backend.docs("posts")["p"] = {"$id": "p", "userId": user["$id"]}

        resp = client.post("/api/demo/reset", headers=AUTH)

        assert resp.status_code == 200
        report = resp.json()["report"]
        assert report["found"] is True
        assert report["swept"] == {"posts": 1}
        assert backend.docs("posts") == {}

    def test_reset_without_sweep(self, client, backend):
        user = backend.users_by_email[DEMO_EMAIL]
        backend.docs("posts")["p"] = {"$id": "p", "userId": user["$id"]}

        resp = client.post("/api/demo/reset", headers=AUTH, json={"sweep": False})

        assert resp.status_code == 200
        assert "p" in backend.docs("posts")

    def test_reset_unknown_user(self, client, backend):
        del backend.users_by_email[DEMO_EMAIL]
        assert client.post("/api/demo/reset", headers=AUTH).status_code == 404

    def test_setup_tracking(self, client):
        resp = client.post("/api/demo/setup-tracking", headers=AUTH)
        assert resp.status_code == 200
        assert f"collection {TRACKING}" in resp.json()["created"]
