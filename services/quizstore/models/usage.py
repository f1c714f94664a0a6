from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .quiz import utc_now


class UsageSnapshot(BaseModel):
    """Point-in-time storage consumption. Derived, never persisted."""

    total_size: int = 0
    quizzes_size: int = 0
    drafts_size: int = 0
    attachments_size: int = 0
    remaining_space: int = 0
    percentage_used: float = 0.0
    is_near_limit: bool = False
    capacity: int = 0


class OperationResult(BaseModel):
    """What every mutating storage-service call hands back to the UI."""

    success: bool
    used_fallback: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    id: Optional[str] = None


class Notice(BaseModel):
    """Dismissible user-facing message produced by the storage service."""

    id: str = Field(default_factory=lambda: uuid4().hex[:8])
    level: Literal["info", "success", "warning", "error"] = "info"
    message: str
    created_at: datetime = Field(default_factory=utc_now)
