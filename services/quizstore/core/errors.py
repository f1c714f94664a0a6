"""
Error taxonomy for the quiz storage layer.

Backend driver errors are converted into these at the adapter boundary.
Everything above the adapters raises (or catches) only StorageError
subclasses; the storage service turns them into OperationResult values.
"""
from __future__ import annotations

from typing import Any, Optional


class StorageError(Exception):
    """Base class. `code` is stable and safe to show to API clients."""

    code = "storage_error"

    def __init__(self, message: str = "", *, detail: Optional[Any] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.detail = detail


class BackendUnavailable(StorageError):
    """Neither the primary nor the fallback store could serve the call."""

    code = "backend_unavailable"


class QuotaExceeded(StorageError):
    """The backend itself refused the write for lack of space."""

    code = "quota_exceeded"


class CapacityExceeded(StorageError):
    """The configured capacity ceiling would be exceeded by this write."""

    code = "capacity_exceeded"

    def __init__(
        self,
        message: str = "",
        *,
        required: int = 0,
        available: int = 0,
        detail: Optional[Any] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.required = required
        self.available = available


class AttachmentTooLarge(CapacityExceeded):
    code = "attachment_too_large"


class CorruptRecord(StorageError):
    code = "corrupt_record"

    def __init__(self, collection: str, record_id: str, reason: str = "") -> None:
        super().__init__(f"Corrupt record {collection}/{record_id}: {reason}".rstrip(": "))
        self.collection = collection
        self.record_id = record_id


class AutoSaveFailed(StorageError):
    code = "autosave_failed"


class RecordDeleted(StorageError):
    """A draft was offered for an id that was deleted moments ago."""

    code = "record_deleted"

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Quiz {record_id} was deleted; start a new draft instead")
        self.record_id = record_id
