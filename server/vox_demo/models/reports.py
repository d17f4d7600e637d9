"""Outcome models returned by the reset, seeding, session and housekeeping flows."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ResetReport(BaseModel):
    """What one undo run did. Failures are counted, never raised."""

    preferences_reset: bool = False
    fetch_failed: bool = False
    fetched: int = 0
    targets_deleted: int = 0
    already_absent: int = 0
    target_failures: int = 0
    skipped: int = 0
    records_deleted: int = 0
    record_failures: int = 0
    rate_limited: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)

    @property
    def clean(self) -> bool:
        return (
            self.preferences_reset
            and not self.fetch_failed
            and self.target_failures == 0
            and self.record_failures == 0
        )


class SeedOutcome(str, Enum):
    ENHANCED = "enhanced"
    ESSENTIAL = "essential"
    FAILED = "failed"


class LoginResult(BaseModel):
    email: str
    session_id: str = ""
    is_demo: bool = False
    degraded: bool = False
    notice: Optional[str] = None
    reset: Optional[ResetReport] = None
    seed: Optional[SeedOutcome] = None


class LogoutResult(BaseModel):
    email: str = ""
    is_demo: bool = False
    reset: Optional[ResetReport] = None
    session_deleted: bool = False


class PurgeReport(BaseModel):
    cutoff: str
    found: int = 0
    deleted: int = 0
    failed: int = 0


class AdminResetReport(BaseModel):
    user_id: Optional[str] = None
    found: bool = False
    reset: Optional[ResetReport] = None
    swept: dict[str, int] = Field(default_factory=dict)
    sweep_failures: int = 0
