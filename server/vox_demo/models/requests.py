"""Request bodies for the administrative gateway routes."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CleanupRequest(BaseModel):
    retention_days: int | None = Field(default=None, ge=0)


class AdminResetRequest(BaseModel):
    sweep: bool = True
