"""
Pydantic schemas for API request/response validation.
"""
from .storage import (
    AutoSaveStatusOut,
    CleanupIn,
    CleanupOut,
    InitializeOut,
    NoticeOut,
    SaveNowOut,
    SyncStatusOut,
)

__all__ = [
    "AutoSaveStatusOut",
    "CleanupIn",
    "CleanupOut",
    "InitializeOut",
    "NoticeOut",
    "SaveNowOut",
    "SyncStatusOut",
]
