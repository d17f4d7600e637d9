"""Tests for environment configuration and the command line entry point."""

from __future__ import annotations

import asyncio
import json
import os
from unittest import mock

from vox_demo import __main__ as cli
from vox_demo.app_state import GatewayState
from vox_demo.config import DemoConfig
from vox_demo.services.throttle import Throttle


class TestDemoConfig:
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            cfg = DemoConfig()
        assert cfg.demo_email == "test@sjcem.edu.in"
        assert cfg.tracking_collection == "demo_session_tracking"
        assert cfg.retention_days == 7
        assert cfg.api_key is None
        assert cfg.sweep_collections == ["posts", "comments", "connections", "membership", "likes"]
        assert cfg.cors_origins == ["*"]

    def test_env_overrides(self):
        env = {
            "VOX_DEMO_EMAIL": "demo@example.edu",
            "VOX_RETENTION_DAYS": "3",
            "VOX_SWEEP_COLLECTIONS": "posts, likes ,",
            "VOX_PAUSE_BETWEEN_OPS": "0",
            "VOX_RATE_PER_SECOND": "2.5",
            "VOX_CORS_ORIGINS": "http://localhost:8081,https://vox.example.edu",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = DemoConfig()
        assert cfg.demo_email == "demo@example.edu"
        assert cfg.retention_days == 3
        assert cfg.sweep_collections == ["posts", "likes"]
        assert cfg.cors_origins == ["http://localhost:8081", "https://vox.example.edu"]
        policy = cfg.throttle_policy()
        assert policy.between_ops == 0.0
        assert policy.rate_per_second == 2.5

    def test_gateway_key_generated_once(self, tmp_path):
        with mock.patch.dict(os.environ, {"VOX_STATE_DIR": str(tmp_path)}, clear=True):
            first = DemoConfig().gateway_api_key
            second = DemoConfig().gateway_api_key
        assert first == second
        assert (tmp_path / "api-key.txt").read_text() == first

    def test_gateway_key_from_env(self, tmp_path):
        env = {"VOX_STATE_DIR": str(tmp_path), "VOX_GATEWAY_API_KEY": "from-env"}
        with mock.patch.dict(os.environ, env, clear=True):
            assert DemoConfig().gateway_api_key == "from-env"
        assert not (tmp_path / "api-key.txt").exists()


class TestCli:
    def test_admin_commands_need_key(self):
        cfg = DemoConfig()
        cfg.api_key = None
        with mock.patch.object(cli, "state", GatewayState(cfg)):
            assert cli.main(["purge"]) == 2

    def test_setup_tracking_prints_json(self, backend, capsys):
        cfg = DemoConfig()
        cfg.api_key = "admin-key"
        gw = GatewayState(cfg)
        gw.throttle = Throttle.disabled()
        gw._admin = backend

        with mock.patch.object(cli, "state", gw):
            assert cli.main(["setup-tracking"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert f"collection {cfg.tracking_collection}" in out["created"]


class TestGatewayState:
    def test_jwt_clients_share_demo_bucket(self):
        gw = GatewayState(DemoConfig())
        first = gw.jwt_client("jwt-1")
        second = gw.jwt_client("jwt-2")
        assert first.throttle is second.throttle
        assert first.throttle is gw.demo_throttle
        assert first.throttle is not gw.throttle

        async def close():
            await first.aclose()
            await second.aclose()

        asyncio.run(close())
