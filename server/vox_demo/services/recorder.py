"""Change recorder: append a tracking record for every demo-identity mutation.

Recording is best-effort. The caller's primary mutation has normally already
succeeded by the time a record is written, so a failed write is logged and
reported as an empty id, never raised.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..models.changes import (
    ChangeKind,
    DocumentTarget,
    FileTarget,
    RELATION_KINDS,
    TrackedChange,
)
from .backend import ID, BackendClient, Databases, is_rate_limited

logger = logging.getLogger(__name__)

# relation sub-tags used by callers, mapped onto the closed change kinds
_RELATION_ALIASES = {
    "follow_associations": ChangeKind.FOLLOW,
    "unfollow_association": ChangeKind.FOLLOW,
    "connection_request": ChangeKind.CONNECTION,
    "join_association": ChangeKind.MEMBERSHIP,
}


def is_demo_user(email: str | None, demo_email: str) -> bool:
    if not email:
        return False
    return email.strip().lower() == demo_email.strip().lower()


def relation_change_kind(relation_kind: str) -> ChangeKind:
    """Map a free-text relation tag onto a change kind (``document`` if unknown)."""
    tag = relation_kind.strip().lower()
    if tag in _RELATION_ALIASES:
        return _RELATION_ALIASES[tag]
    try:
        kind = ChangeKind(tag)
    except ValueError:
        return ChangeKind.DOCUMENT
    return kind if kind in RELATION_KINDS else ChangeKind.DOCUMENT


class ChangeRecorder:
    """Writes TrackedChange rows into the tracking collection."""

    def __init__(
        self,
        databases: Databases,
        *,
        database_id: str,
        collection: str,
        demo_email: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._databases = databases
        self.database_id = database_id
        self.collection = collection
        self.demo_email = demo_email
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def track_document_change(self, database_id: str, collection_name: str, document_id: str) -> str:
        return await self._record(
            ChangeKind.DOCUMENT,
            document=(database_id or self.database_id, collection_name, document_id),
        )

    async def track_file_upload(self, bucket_name: str, file_id: str) -> str:
        return await self._record(ChangeKind.FILE, file=(bucket_name, file_id))

    async def track_profile_update(self, user_id: str) -> str:
        return await self._record(ChangeKind.PROFILE, user_id=user_id)

    async def track_preference_change(self, pref_type: str, data_type: str = "") -> str:
        return await self._record(ChangeKind.PREFERENCE, pref_type=pref_type, data_type=data_type)

    async def track_relation(
        self, database_id: str, collection_name: str, document_id: str, relation_kind: str
    ) -> str:
        return await self._record(
            relation_change_kind(relation_kind),
            document=(database_id or self.database_id, collection_name, document_id),
            relation_kind=relation_kind,
        )

    async def _record(
        self,
        kind: ChangeKind,
        document: tuple[str, str, str] | None = None,
        file: tuple[str, str] | None = None,
        **fields: Any,
    ) -> str:
        try:
            target: DocumentTarget | FileTarget | None = None
            if document is not None:
                database_id, collection_name, document_id = document
                target = DocumentTarget(
                    database_id=database_id or "", collection_name=collection_name or "", document_id=document_id or ""
                )
            elif file is not None:
                target = FileTarget(bucket_name=file[0] or "", file_id=file[1] or "")
            change = TrackedChange(
                kind=kind,
                target=target,
                owner_email=self.demo_email,
                created_at=self._clock().isoformat(),
                **fields,
            )
            doc = await self._databases.create_document(
                self.database_id, self.collection, ID.unique(), change.to_record()
            )
        except Exception as exc:
            if is_rate_limited(exc):
                logger.warning("Rate limit hit while tracking %s change: %s", kind.value, exc)
            else:
                logger.error("Failed to track %s change: %s", kind.value, exc)
            return ""

        record_id = doc.get("$id", "")
        logger.info("Tracked %s change %s", kind.value, _describe(change))
        return record_id


def _describe(change: TrackedChange) -> str:
    if change.target is not None:
        return str(change.target)
    return change.user_id or change.pref_type


class DemoTracker:
    """Collaborator-side guard: mutate first, then record, only for the demo identity.

    Screens call these helpers instead of the raw backend so that recording
    costs nothing for ordinary users and never blocks the primary mutation.
    """

    def __init__(self, backend: BackendClient, recorder: ChangeRecorder, identity_email: str | None) -> None:
        self.backend = backend
        self.recorder = recorder
        self.identity_email = identity_email

    def should_track(self) -> bool:
        return is_demo_user(self.identity_email, self.recorder.demo_email)

    async def track_document(self, database_id: str, collection_name: str, document_id: str) -> str:
        if not self.should_track():
            return ""
        return await self.recorder.track_document_change(database_id, collection_name, document_id)

    async def track_file(self, bucket_name: str, file_id: str) -> str:
        if not self.should_track():
            return ""
        return await self.recorder.track_file_upload(bucket_name, file_id)

    async def create_document(
        self,
        database_id: str,
        collection_name: str,
        data: dict[str, Any],
        document_id: str | None = None,
        relation_kind: str = "",
    ) -> dict:
        doc = await self.backend.databases.create_document(
            database_id, collection_name, document_id or ID.unique(), data
        )
        if self.should_track():
            if relation_kind:
                await self.recorder.track_relation(database_id, collection_name, doc["$id"], relation_kind)
            else:
                await self.recorder.track_document_change(database_id, collection_name, doc["$id"])
        return doc

    async def create_relation(
        self, database_id: str, collection_name: str, data: dict[str, Any], relation_kind: str
    ) -> dict:
        """Create a follow/connection/membership document and record it under its relation kind."""
        return await self.create_document(database_id, collection_name, data, relation_kind=relation_kind)

    async def upload_file(self, bucket_name: str, filename: str, content: bytes, file_id: str | None = None) -> dict:
        created = await self.backend.storage.create_file(bucket_name, file_id or ID.unique(), filename, content)
        if self.should_track():
            await self.recorder.track_file_upload(bucket_name, created["$id"])
        return created

    async def update_prefs(
        self, prefs: dict[str, Any], pref_type: str = "preferences", data_type: str = "object"
    ) -> dict:
        updated = await self.backend.account.update_prefs(prefs)
        if self.should_track():
            await self.recorder.track_preference_change(pref_type, data_type)
        return updated

    async def update_profile(self, user_id: str, profile: dict[str, Any]) -> dict:
        """Write the profile block of the preference bag."""
        current = await self.backend.account.get_prefs()
        updated = await self.backend.account.update_prefs({**current, "profile": profile})
        if self.should_track():
            await self.recorder.track_profile_update(user_id)
        return updated
