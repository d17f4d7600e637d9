"""Environment-based configuration for the demo-session reset gateway."""

from __future__ import annotations

import os
import secrets
from pathlib import Path

from .services.throttle import ThrottlePolicy


class DemoConfig:
    """Configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Backend platform
        self.endpoint = os.environ.get("VOX_BACKEND_ENDPOINT", "https://fra.cloud.appwrite.io/v1")
        self.project_id = os.environ.get("VOX_BACKEND_PROJECT_ID", "68acb6eb0002c8837570")
        self.api_key = os.environ.get("VOX_BACKEND_API_KEY") or None
        self.database_id = os.environ.get("VOX_DATABASE_ID", "68c58e83000a2666b4d9")

        # Demo identity and its bookkeeping collections
        self.demo_email = os.environ.get("VOX_DEMO_EMAIL", "test@sjcem.edu.in")
        self.tracking_collection = os.environ.get("VOX_TRACKING_COLLECTION", "demo_session_tracking")
        self.access_log_collection = os.environ.get("VOX_ACCESS_LOG_COLLECTION", "test_user_access_logs")
        self.default_association_id = os.environ.get("VOX_DEFAULT_ASSOCIATION_ID", "association-ascai")
        self.retention_days = int(os.environ.get("VOX_RETENTION_DAYS", "7"))

        sweep = os.environ.get("VOX_SWEEP_COLLECTIONS", "posts,comments,connections,membership,likes")
        self.sweep_collections: list[str] = [c.strip() for c in sweep.split(",") if c.strip()]

        # Request pacing (seconds)
        self.rate_per_second = float(os.environ.get("VOX_RATE_PER_SECOND", "5"))
        self.rate_burst = int(os.environ.get("VOX_RATE_BURST", "5"))
        self.pause_between_ops = float(os.environ.get("VOX_PAUSE_BETWEEN_OPS", "0.2"))
        self.pause_between_groups = float(os.environ.get("VOX_PAUSE_BETWEEN_GROUPS", "1.0"))
        self.pause_login_settle = float(os.environ.get("VOX_PAUSE_LOGIN_SETTLE", "0.5"))
        self.pause_before_reset = float(os.environ.get("VOX_PAUSE_BEFORE_RESET", "1.0"))
        self.pause_before_seed = float(os.environ.get("VOX_PAUSE_BEFORE_SEED", "2.0"))
        self.pause_between_seed_passes = float(os.environ.get("VOX_PAUSE_BETWEEN_SEED_PASSES", "1.0"))

        # Gateway
        self.host = os.environ.get("VOX_GATEWAY_HOST", "0.0.0.0")
        self.port = int(os.environ.get("VOX_GATEWAY_PORT", "8090"))
        self.state_dir = Path(os.environ.get("VOX_STATE_DIR", str(Path.home() / ".vox-demo")))
        self._gateway_api_key: str | None = os.environ.get("VOX_GATEWAY_API_KEY") or None

        # CORS origins (comma-separated)
        origins = os.environ.get("VOX_CORS_ORIGINS", "")
        self.cors_origins: list[str] = [o.strip() for o in origins.split(",") if o.strip()] if origins else ["*"]

    @property
    def gateway_api_key(self) -> str:
        if self._gateway_api_key is None:
            self._gateway_api_key = self._load_or_create_api_key()
        return self._gateway_api_key

    def throttle_policy(self) -> ThrottlePolicy:
        return ThrottlePolicy(
            rate_per_second=self.rate_per_second,
            burst=self.rate_burst,
            between_ops=self.pause_between_ops,
            between_groups=self.pause_between_groups,
            login_settle=self.pause_login_settle,
            before_reset=self.pause_before_reset,
            before_seed=self.pause_before_seed,
            between_seed_passes=self.pause_between_seed_passes,
        )

    def _load_or_create_api_key(self) -> str:
        """Load the gateway key from <state_dir>/api-key.txt or generate a new one."""
        key_path = self.state_dir / "api-key.txt"
        if key_path.exists():
            return key_path.read_text().strip()

        key = secrets.token_urlsafe(32)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        key_path.write_text(key)
        return key


# Singleton
config = DemoConfig()
