from __future__ import annotations

from .base import COLLECTIONS, BackendResult, StorageAdapter, WriteOp
from .fallback import FallbackAdapter
from .json import JsonAdapter
from .sqlite import SqliteAdapter

__all__ = [
    "COLLECTIONS",
    "BackendResult",
    "StorageAdapter",
    "WriteOp",
    "FallbackAdapter",
    "JsonAdapter",
    "SqliteAdapter",
]
