"""
Pydantic schemas for storage maintenance and auto-save endpoints.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class InitializeOut(BaseModel):
    """Result of (re)initializing storage."""
    primary_active: bool = Field(..., description="False when the fallback store is in use")
    active_backend: str


class SyncStatusOut(BaseModel):
    sync_status: Literal["idle", "syncing", "synced", "error"]


class CleanupIn(BaseModel):
    """Schema for purging aged drafts."""
    max_age_days: Optional[float] = Field(
        None,
        ge=0,
        description="Drafts saved strictly before now - max_age_days are deleted (server default when omitted)",
    )


class CleanupOut(BaseModel):
    removed: int = Field(..., ge=0)


class NoticeOut(BaseModel):
    id: str
    level: Literal["info", "success", "warning", "error"]
    message: str
    created_at: datetime


class AutoSaveStatusOut(BaseModel):
    """Snapshot of the current auto-save session."""
    enabled: bool = False
    status: Literal["idle", "saving", "saved", "error"] = "idle"
    draft_id: Optional[str] = None
    retry_count: int = 0
    pending: bool = False
    dirty: bool = False
    gave_up: bool = False
    last_error: Optional[str] = None
    last_saved: Optional[datetime] = None
    closed: bool = False


class SaveNowOut(BaseModel):
    saved: bool
    autosave: AutoSaveStatusOut
