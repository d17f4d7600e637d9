"""Login/logout wrapping for the shared demo identity.

Non-demo identities go straight through to the backend. For the demo identity,
login clears any residue left by a previous visitor and seeds default
preferences; logout undoes this visitor's changes before the session is
destroyed, because the deletes need the demo identity's own credentials.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ..models.reports import LoginResult, LogoutResult, SeedOutcome
from .backend import ID, BackendClient, Query, is_rate_limited
from .preferences import AccountPrefs, DefaultPreferenceSeeder, PreferenceResetExecutor
from .recorder import ChangeRecorder, DemoTracker, is_demo_user
from .throttle import Throttle
from .undo_engine import UndoEngine

logger = logging.getLogger(__name__)

DEMO_NOTICE = (
    "You are using a shared demo account. Anything you create or change "
    "during this session is removed when you log out."
)
DEMO_DEGRADED_NOTICE = (
    "You are using a shared demo account. Some demo setup steps did not finish, "
    "so you may see content left by a previous visitor. Your changes are still "
    "removed when you log out."
)


class DemoSessionLifecycle:
    def __init__(
        self,
        backend: BackendClient,
        throttle: Throttle,
        *,
        demo_email: str,
        database_id: str,
        tracking_collection: str,
        access_log_collection: str,
        default_association_id: str,
    ) -> None:
        self.backend = backend
        self.throttle = throttle
        self.demo_email = demo_email
        self.database_id = database_id
        self.tracking_collection = tracking_collection
        self.access_log_collection = access_log_collection
        self.current_email: str | None = None

        prefs = AccountPrefs(backend.account)
        self.recorder = ChangeRecorder(
            backend.databases,
            database_id=database_id,
            collection=tracking_collection,
            demo_email=demo_email,
        )
        self.preference_reset = PreferenceResetExecutor(prefs)
        self.seeder = DefaultPreferenceSeeder(prefs, throttle, default_association_id=default_association_id)
        self.undo_engine = UndoEngine(
            backend,
            self.preference_reset,
            throttle,
            database_id=database_id,
            collection=tracking_collection,
            demo_email=demo_email,
        )

    @classmethod
    def from_config(cls, backend: BackendClient, throttle: Throttle, cfg) -> DemoSessionLifecycle:
        return cls(
            backend,
            throttle,
            demo_email=cfg.demo_email,
            database_id=cfg.database_id,
            tracking_collection=cfg.tracking_collection,
            access_log_collection=cfg.access_log_collection,
            default_association_id=cfg.default_association_id,
        )

    def is_demo_user(self, email: str | None) -> bool:
        return is_demo_user(email, self.demo_email)

    def tracker(self) -> DemoTracker:
        """Tracker bound to whoever is logged in right now."""
        return DemoTracker(self.backend, self.recorder, self.current_email)

    async def init_demo_session_tracking(self) -> bool:
        """Check that the tracking collection is reachable. Best-effort."""
        try:
            await self.backend.databases.list_documents(
                self.database_id, self.tracking_collection, [Query.limit(1)]
            )
        except Exception as exc:
            logger.error(
                "Demo session tracking collection %s is not reachable (create it with "
                "'python -m vox_demo setup-tracking'): %s",
                self.tracking_collection,
                exc,
            )
            return False
        logger.info("Demo session tracking collection exists")
        return True

    async def log_access(self, email: str, action: str, resource: str = "session") -> None:
        """Append an audit entry for the demo identity. Never raises."""
        if not self.is_demo_user(email):
            return
        try:
            await self.backend.databases.create_document(
                self.database_id,
                self.access_log_collection,
                ID.unique(),
                {
                    "userEmail": email,
                    "action": action,
                    "resource": resource,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "ip": "gateway",
                    "userAgent": "vox-demo",
                },
            )
        except Exception as exc:
            logger.error("Failed to log demo access (%s): %s", action, exc)

    async def reset_demo_user_session(self):
        return await self.undo_engine.reset_demo_user_session()

    async def setup_demo_default_preferences(self) -> SeedOutcome:
        return await self.seeder.setup_demo_default_preferences()

    async def login(self, email: str, password: str) -> LoginResult:
        """Create a session; for the demo identity, also repair and seed it.

        Authentication errors propagate. Anything that fails after the session
        exists only degrades the notice.
        """
        session = await self.backend.account.create_email_password_session(email, password)
        self.current_email = email
        result = LoginResult(email=email, session_id=session.get("$id", ""))
        if not self.is_demo_user(email):
            return result

        result.is_demo = True
        logger.info("Demo user logged in, preparing a clean session")
        try:
            await self.throttle.pause("login_settle")
            await self.init_demo_session_tracking()
            await self.throttle.pause("login_settle")
            await self.log_access(email, "login")
            await self.throttle.pause("before_reset")
            # clears residue from a visitor who never logged out
            result.reset = await self.reset_demo_user_session()
            await self.throttle.pause("before_seed")
            result.seed = await self.setup_demo_default_preferences()
        except Exception as exc:
            if is_rate_limited(exc):
                logger.warning("Rate limit hit during demo login setup: %s", exc)
            else:
                logger.error("Demo login setup failed: %s", exc)
            result.degraded = True

        if result.seed == SeedOutcome.FAILED or (result.reset is not None and not result.reset.clean):
            result.degraded = True
        result.notice = DEMO_DEGRADED_NOTICE if result.degraded else DEMO_NOTICE
        return result

    async def logout(self) -> LogoutResult:
        """Undo demo changes (while still authenticated), then end the session."""
        email = self.current_email or ""
        try:
            email = (await self.backend.account.get()).get("email", email)
        except Exception as exc:
            logger.warning("Could not read current identity before logout: %s", exc)

        result = LogoutResult(email=email, is_demo=self.is_demo_user(email))
        if result.is_demo:
            await self.log_access(email, "logout")
            try:
                result.reset = await self.reset_demo_user_session()
            except Exception as exc:
                logger.error("Demo reset during logout failed: %s", exc)

        try:
            await self.backend.account.delete_session("current")
            result.session_deleted = True
        except Exception as exc:
            logger.error("Failed to delete session: %s", exc)
        self.current_email = None
        return result
