"""Tracked-change records: one row per mutation made by the demo identity."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator


class ChangeKind(str, Enum):
    DOCUMENT = "document"
    FILE = "file"
    PROFILE = "profile"
    ASSOCIATION = "association"
    CONNECTION = "connection"
    FOLLOW = "follow"
    MEMBERSHIP = "membership"
    PREFERENCE = "preference"


# Kinds whose undo is "delete the referenced document"
DOCUMENT_KINDS = frozenset(
    {
        ChangeKind.DOCUMENT,
        ChangeKind.ASSOCIATION,
        ChangeKind.CONNECTION,
        ChangeKind.FOLLOW,
        ChangeKind.MEMBERSHIP,
    }
)
RELATION_KINDS = DOCUMENT_KINDS - {ChangeKind.DOCUMENT}

# Kinds whose state lives in the preference bag; undone by the bulk preference reset
PREFERENCE_KINDS = frozenset({ChangeKind.PROFILE, ChangeKind.PREFERENCE})


class DocumentTarget(BaseModel):
    database_id: str = Field(min_length=1)
    collection_name: str = Field(min_length=1)
    document_id: str = Field(min_length=1)

    def __str__(self) -> str:
        return f"{self.collection_name}/{self.document_id}"


class FileTarget(BaseModel):
    bucket_name: str = Field(min_length=1)
    file_id: str = Field(min_length=1)

    def __str__(self) -> str:
        return f"{self.bucket_name}/{self.file_id}"


class TrackedChange(BaseModel):
    id: Optional[str] = None
    kind: ChangeKind
    target: Union[DocumentTarget, FileTarget, None] = None
    relation_kind: str = ""
    user_id: str = ""
    pref_type: str = ""
    data_type: str = ""
    owner_email: str
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @model_validator(mode="after")
    def _check_fields_for_kind(self) -> TrackedChange:
        if self.kind in DOCUMENT_KINDS:
            if not isinstance(self.target, DocumentTarget):
                raise ValueError(f"{self.kind.value} change requires a document target")
        elif self.kind == ChangeKind.FILE:
            if not isinstance(self.target, FileTarget):
                raise ValueError("file change requires a file target")
        else:
            if self.target is not None:
                raise ValueError(f"{self.kind.value} change takes no target")
            if self.kind == ChangeKind.PROFILE and not self.user_id:
                raise ValueError("profile change requires user_id")
            if self.kind == ChangeKind.PREFERENCE and not self.pref_type:
                raise ValueError("preference change requires pref_type")
        return self

    def to_record(self) -> dict[str, Any]:
        """Flatten into the tracking collection's attribute layout."""
        record: dict[str, Any] = {
            "changeType": self.kind.value,
            "userEmail": self.owner_email,
            "timestamp": self.created_at,
        }
        if isinstance(self.target, DocumentTarget):
            record["databaseId"] = self.target.database_id
            record["collectionId"] = self.target.collection_name
            record["documentId"] = self.target.document_id
        elif isinstance(self.target, FileTarget):
            record["bucketId"] = self.target.bucket_name
            record["fileId"] = self.target.file_id
        for key, value in (
            ("relationKind", self.relation_kind),
            ("userId", self.user_id),
            ("prefType", self.pref_type),
            ("dataType", self.data_type),
        ):
            if value:
                record[key] = value
        return record

    @classmethod
    def from_record(cls, doc: dict[str, Any]) -> TrackedChange:
        """Parse a stored tracking document. Raises ValueError if it is unusable."""
        raw_kind = doc.get("changeType")
        try:
            kind = ChangeKind(raw_kind)
        except ValueError:
            raise ValueError(f"Unknown change kind: {raw_kind!r}") from None

        target: DocumentTarget | FileTarget | None = None
        if kind in DOCUMENT_KINDS:
            target = DocumentTarget(
                database_id=doc.get("databaseId") or "",
                collection_name=doc.get("collectionId") or "",
                document_id=doc.get("documentId") or "",
            )
        elif kind == ChangeKind.FILE:
            target = FileTarget(bucket_name=doc.get("bucketId") or "", file_id=doc.get("fileId") or "")

        return cls(
            id=doc.get("$id"),
            kind=kind,
            target=target,
            relation_kind=doc.get("relationKind") or "",
            user_id=doc.get("userId") or "",
            pref_type=doc.get("prefType") or "",
            data_type=doc.get("dataType") or "",
            owner_email=doc.get("userEmail") or "",
            created_at=doc.get("timestamp") or "",
        )
