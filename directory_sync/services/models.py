"""Shared response and status models."""
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class SyncStatus(BaseModel):
    """Outcome of one full sync run. Rows are appended, never mutated."""
    id: Optional[int] = None
    lastSyncTime: str = ""
    usersCount: int = 0
    devicesCount: int = 0
    success: bool = False
    error: Optional[str] = None
    durationMs: Optional[int] = Field(None, description="Wall-clock duration of the run")


class APIResponse(BaseModel):
    """Uniform envelope returned by every exposed operation."""
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None
