"""Administrative housekeeping for the demo account (admin API key).

These paths favour completeness over latency: individual deletes are retried
with exponential backoff, unlike the interactive logout path which moves on
after a single failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar

from ..models.reports import AdminResetReport, PurgeReport
from .backend import BackendClient, Query, is_conflict, is_not_found, is_rate_limited
from .preferences import BASELINE_PREFERENCES, PreferenceResetExecutor, UserPrefs
from .throttle import Throttle
from .undo_engine import UndoEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_ATTEMPTS = 3

# Fields that identify the owning user across the app's collections
OWNER_FIELDS = ["userId", "user_id", "createdBy", "authorId", "fromUserId"]

TRACKING_ATTRIBUTES = [
    ("changeType", 20, True),
    ("databaseId", 36, False),
    ("collectionId", 36, False),
    ("documentId", 36, False),
    ("bucketId", 36, False),
    ("fileId", 36, False),
    ("userId", 36, False),
    ("relationKind", 36, False),
    ("prefType", 36, False),
    ("dataType", 36, False),
    ("userEmail", 128, True),
    ("timestamp", 30, True),
]


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = MAX_RETRY_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, backing off exponentially with jitter.

    Not-found errors are not retried. Re-raises the last error.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if is_not_found(exc):
                raise
            logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, exc)
            if attempt >= max_attempts:
                raise
            base = 2.0 if is_rate_limited(exc) else 1.0
            delay = base * (1.5 ** (attempt - 1)) * (0.9 + random.random() * 0.2)
            logger.info("Retrying after %.2fs", delay)
            await sleep(delay)
        attempt += 1


class DemoHousekeeping:
    def __init__(
        self,
        admin: BackendClient,
        throttle: Throttle,
        *,
        database_id: str,
        tracking_collection: str,
        demo_email: str,
        sweep_collections: list[str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.admin = admin
        self.throttle = throttle
        self.database_id = database_id
        self.tracking_collection = tracking_collection
        self.demo_email = demo_email
        self.sweep_collections = sweep_collections or []
        self._sleep = sleep

    @classmethod
    def from_config(cls, admin: BackendClient, throttle: Throttle, cfg) -> DemoHousekeeping:
        return cls(
            admin,
            throttle,
            database_id=cfg.database_id,
            tracking_collection=cfg.tracking_collection,
            demo_email=cfg.demo_email,
            sweep_collections=cfg.sweep_collections,
        )

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(fn, sleep=self._sleep)

    async def purge_stale_changes(self, retention_days: int = 7, now: datetime | None = None) -> PurgeReport:
        """Delete tracking records older than the retention window, whoever owns them."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        report = PurgeReport(cutoff=cutoff.isoformat())
        logger.info("Cleaning up tracked changes older than %s", report.cutoff)

        records = await self._retry(
            lambda: self.admin.databases.list_all_documents(
                self.database_id, self.tracking_collection, [Query.less_than("timestamp", report.cutoff)]
            )
        )
        report.found = len(records)
        for doc in records:
            record_id = doc["$id"]
            try:
                await self._retry(
                    lambda: self.admin.databases.delete_document(
                        self.database_id, self.tracking_collection, record_id
                    )
                )
            except Exception as exc:
                if is_not_found(exc):
                    report.deleted += 1
                    continue
                report.failed += 1
                logger.error("Failed to purge tracking record %s: %s", record_id, exc)
                continue
            report.deleted += 1

        logger.info("Purged %d/%d stale tracking records", report.deleted, report.found)
        return report

    async def find_demo_user(self) -> dict | None:
        result = await self._retry(lambda: self.admin.users.list([Query.equal("email", self.demo_email)]))
        users = result.get("users", [])
        if not users:
            return None
        return users[0]

    async def admin_reset_demo_user(self, sweep: bool = True) -> AdminResetReport:
        """Forced reset without a demo session: preferences, tracked changes, owned documents."""
        report = AdminResetReport()
        user = await self.find_demo_user()
        if user is None:
            logger.warning("Demo user %s not found", self.demo_email)
            return report
        report.found = True
        report.user_id = user["$id"]
        logger.info("Resetting demo user %s (%s)", report.user_id, self.demo_email)

        engine = UndoEngine(
            self.admin,
            PreferenceResetExecutor(UserPrefs(self.admin.users, report.user_id), BASELINE_PREFERENCES),
            self.throttle,
            database_id=self.database_id,
            collection=self.tracking_collection,
            demo_email=self.demo_email,
        )
        report.reset = await engine.reset_demo_user_session()

        if sweep:
            for collection in self.sweep_collections:
                await self._sweep_collection(collection, report.user_id, report)
        return report

    async def _sweep_collection(self, collection: str, user_id: str, report: AdminResetReport) -> None:
        """Delete documents in ``collection`` owned by the demo user but never tracked."""
        probes = [(field, user_id) for field in OWNER_FIELDS] + [("email", self.demo_email)]
        deleted = 0
        for field, value in probes:
            try:
                docs = await self.admin.databases.list_all_documents(
                    self.database_id, collection, [Query.equal(field, value)]
                )
            except Exception as exc:
                # 400: the collection has no such attribute
                if getattr(exc, "code", None) != 400:
                    logger.error("Error checking %s by %s: %s", collection, field, exc)
                continue

            for doc in docs:
                try:
                    await self._retry(
                        lambda: self.admin.databases.delete_document(self.database_id, collection, doc["$id"])
                    )
                    deleted += 1
                except Exception as exc:
                    if is_not_found(exc):
                        continue
                    report.sweep_failures += 1
                    logger.error("Error deleting %s/%s: %s", collection, doc["$id"], exc)
                await self.throttle.pause("between_ops")

        if deleted:
            logger.info("Swept %d demo documents from %s", deleted, collection)
        report.swept[collection] = deleted

    async def setup_tracking_store(self) -> list[str]:
        """Create the tracking collection, its attributes and the owner index. Returns what was created."""
        created: list[str] = []

        async def _ensure(label: str, fn: Callable[[], Awaitable[dict]]) -> None:
            try:
                await self._retry(fn)
            except Exception as exc:
                if is_conflict(exc):
                    logger.info("%s already exists", label)
                    return
                raise
            created.append(label)
            logger.info("Created %s", label)

        await _ensure(
            f"collection {self.tracking_collection}",
            lambda: self.admin.databases.create_collection(
                self.database_id, self.tracking_collection, self.tracking_collection, ['read("users")']
            ),
        )
        for key, size, required in TRACKING_ATTRIBUTES:
            await _ensure(
                f"attribute {key}",
                lambda key=key, size=size, required=required: self.admin.databases.create_string_attribute(
                    self.database_id, self.tracking_collection, key, size, required
                ),
            )
        await _ensure(
            "index userEmail_index",
            lambda: self.admin.databases.create_index(
                self.database_id, self.tracking_collection, "userEmail_index", "key", ["userEmail"]
            ),
        )
        return created
