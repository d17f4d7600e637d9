"""Process-wide state: the admin backend client and its throttle.

The gateway and the CLI share one admin identity, so they share one token
bucket. Per-visitor clients (JWT or session) are created per request.
"""

from __future__ import annotations

import logging

from .config import DemoConfig, config
from .services.backend import BackendClient
from .services.housekeeping import DemoHousekeeping
from .services.throttle import Throttle

logger = logging.getLogger(__name__)


class GatewayState:
    """Holds the lazily created admin client for the running process."""

    def __init__(self, cfg: DemoConfig) -> None:
        self.config = cfg
        self.throttle = Throttle(cfg.throttle_policy())
        # every JWT client acts as the demo identity, so they draw from one bucket
        self.demo_throttle = Throttle(cfg.throttle_policy())
        self._admin: BackendClient | None = None

    @property
    def has_admin_key(self) -> bool:
        return bool(self.config.api_key)

    def admin(self) -> BackendClient:
        if not self.config.api_key:
            raise RuntimeError("VOX_BACKEND_API_KEY is not configured")
        if self._admin is None:
            self._admin = BackendClient(
                self.config.endpoint,
                self.config.project_id,
                api_key=self.config.api_key,
                throttle=self.throttle,
            )
            logger.info("Admin backend client created for %s", self.config.endpoint)
        return self._admin

    def housekeeping(self) -> DemoHousekeeping:
        return DemoHousekeeping.from_config(self.admin(), self.throttle, self.config)

    def jwt_client(self, jwt: str) -> BackendClient:
        """Client acting as the identity behind ``jwt``. Caller closes it."""
        return BackendClient(
            self.config.endpoint,
            self.config.project_id,
            jwt=jwt,
            throttle=self.demo_throttle,
        )

    async def close(self) -> None:
        if self._admin is not None:
            await self._admin.aclose()
            self._admin = None


# Module-level singleton
state = GatewayState(config)
