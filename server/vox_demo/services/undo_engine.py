"""Replay every outstanding tracked change for the demo identity as a delete.

Processing is strictly sequential with throttle pauses between records and
between kind groups. Every failure is counted and logged at the record it
belongs to; nothing aborts the batch. A target that is already gone counts
as undone, which lets overlapping runs converge on the same clean state. A
tracking record is only removed once its target is gone, so a failed delete
is retried by the next reset.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any

from ..models.changes import (
    ChangeKind,
    DOCUMENT_KINDS,
    PREFERENCE_KINDS,
    DocumentTarget,
    FileTarget,
    TrackedChange,
)
from ..models.reports import ResetReport
from .backend import BackendClient, Query, is_not_found, is_rate_limited
from .preferences import PreferenceResetExecutor
from .throttle import Throttle

logger = logging.getLogger(__name__)

GROUP_ORDER = [
    ChangeKind.FILE.value,
    ChangeKind.DOCUMENT.value,
    ChangeKind.CONNECTION.value,
    ChangeKind.ASSOCIATION.value,
    ChangeKind.FOLLOW.value,
    ChangeKind.MEMBERSHIP.value,
    ChangeKind.PROFILE.value,
    ChangeKind.PREFERENCE.value,
]


def group_by_kind(records: list[dict]) -> OrderedDict[str, list[dict]]:
    """Group raw tracking documents by changeType, known kinds first in GROUP_ORDER."""
    buckets: dict[str, list[dict]] = {}
    for doc in records:
        buckets.setdefault(str(doc.get("changeType") or ""), []).append(doc)

    ordered: OrderedDict[str, list[dict]] = OrderedDict()
    for kind in GROUP_ORDER:
        if kind in buckets:
            ordered[kind] = buckets.pop(kind)
    for kind in sorted(buckets):
        ordered[kind] = buckets[kind]
    return ordered


class UndoEngine:
    def __init__(
        self,
        backend: BackendClient,
        preference_reset: PreferenceResetExecutor,
        throttle: Throttle,
        *,
        database_id: str,
        collection: str,
        demo_email: str,
    ) -> None:
        self.backend = backend
        self.preference_reset = preference_reset
        self.throttle = throttle
        self.database_id = database_id
        self.collection = collection
        self.demo_email = demo_email

    async def reset_demo_user_session(self) -> ResetReport:
        """Reset preferences, then undo and delete every tracked change. Safe to repeat."""
        logger.info("Starting demo user session reset")
        report = ResetReport()

        # Preference changes are coalesced: one bulk reset instead of per-record undo
        report.preferences_reset = await self.preference_reset.reset_preferences()

        try:
            records = await self.backend.databases.list_all_documents(
                self.database_id, self.collection, [Query.equal("userEmail", self.demo_email)]
            )
        except Exception as exc:
            report.fetch_failed = True
            self._note_failure(report, exc)
            logger.error("Failed to fetch tracked changes: %s", exc)
            return report

        report.fetched = len(records)
        if not records:
            logger.info("No tracked changes to reset")
            return report

        groups = group_by_kind(records)
        report.by_kind = {kind: len(docs) for kind, docs in groups.items()}
        logger.info("Found %d tracked changes to reset: %s", report.fetched, report.by_kind)

        first_group = True
        for kind, docs in groups.items():
            if not first_group:
                await self.throttle.pause("between_groups")
            first_group = False

            for index, doc in enumerate(docs):
                if index:
                    await self.throttle.pause("between_ops")
                await self._undo_one(doc, report)

        logger.info(
            "Demo user session reset complete: %d targets deleted, %d already absent, "
            "%d target failures, %d records deleted, %d record failures",
            report.targets_deleted,
            report.already_absent,
            report.target_failures,
            report.records_deleted,
            report.record_failures,
        )
        return report

    async def _undo_one(self, doc: dict[str, Any], report: ResetReport) -> None:
        record_id = doc.get("$id", "")
        try:
            change = TrackedChange.from_record(doc)
        except ValueError as exc:
            logger.warning("Skipping tracked change %s: %s", record_id, exc)
            report.skipped += 1
        else:
            if not await self._undo_target(change, report):
                # keep the record so the next reset retries this target
                return

        await self._delete_record(record_id, report)

    async def _undo_target(self, change: TrackedChange, report: ResetReport) -> bool:
        """Remove the change's target. Returns True once the target is known to be gone."""
        if change.kind in PREFERENCE_KINDS:
            # already covered by the bulk preference reset
            report.skipped += 1
            return True

        target = change.target
        try:
            if change.kind in DOCUMENT_KINDS and isinstance(target, DocumentTarget):
                await self.backend.databases.delete_document(
                    target.database_id, target.collection_name, target.document_id
                )
            elif change.kind == ChangeKind.FILE and isinstance(target, FileTarget):
                await self.backend.storage.delete_file(target.bucket_name, target.file_id)
            else:
                logger.warning("No undo action for %s change %s", change.kind.value, change.id)
                report.skipped += 1
                return True
        except Exception as exc:
            if is_not_found(exc):
                logger.info("Already gone: %s %s", change.kind.value, target)
                report.already_absent += 1
                return True
            self._note_failure(report, exc)
            report.target_failures += 1
            logger.error("Failed to undo %s change %s (%s): %s", change.kind.value, change.id, target, exc)
            return False

        report.targets_deleted += 1
        logger.info("Deleted %s %s", change.kind.value, target)
        return True

    async def _delete_record(self, record_id: str, report: ResetReport) -> None:
        if not record_id:
            report.record_failures += 1
            return
        try:
            await self.backend.databases.delete_document(self.database_id, self.collection, record_id)
        except Exception as exc:
            if is_not_found(exc):
                report.records_deleted += 1
                return
            # left for retention housekeeping
            self._note_failure(report, exc)
            report.record_failures += 1
            logger.error("Failed to delete tracking record %s: %s", record_id, exc)
            return
        report.records_deleted += 1

    @staticmethod
    def _note_failure(report: ResetReport, exc: Exception) -> None:
        if is_rate_limited(exc):
            report.rate_limited += 1
            logger.warning("Rate limit hit during demo reset: %s", exc)
