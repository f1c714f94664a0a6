"""
Storage adapter interface for quizstore.
Defines the contract that all storage backends must implement.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence

# Logical collections. `metadata` holds bookkeeping and is not counted in usage.
COLLECTIONS = ("quizzes", "drafts", "attachments", "metadata")

# Timestamp field each collection is indexed on (for range queries).
INDEX_FIELDS: Dict[str, Optional[str]] = {
    "quizzes": "updated_at",
    "drafts": "last_saved",
    "attachments": None,
    "metadata": None,
}


def index_value(collection: str, record: Dict[str, Any]) -> float:
    """
    Epoch seconds of the record's index field (0.0 when the collection is
    not indexed or the field is empty / unparsable).
    """
    field_name = INDEX_FIELDS.get(collection)
    if not field_name:
        return 0.0
    raw = record.get(field_name)
    if not raw:
        return 0.0
    if isinstance(raw, datetime):
        return raw.timestamp()
    try:
        return datetime.fromisoformat(str(raw)).timestamp()
    except ValueError:
        return 0.0


def check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")


@dataclass(frozen=True)
class WriteOp:
    """One step of a batch passed to `apply`."""

    kind: Literal["put", "delete"]
    collection: str
    key: str
    record: Optional[Dict[str, Any]] = None

    @classmethod
    def put(cls, collection: str, record: Dict[str, Any]) -> "WriteOp":
        return cls("put", collection, str(record["id"]), record)

    @classmethod
    def delete(cls, collection: str, key: str) -> "WriteOp":
        return cls("delete", collection, key)


@dataclass
class BackendResult:
    """Value of a backend call plus whether the fallback store served it."""

    value: Any = None
    used_fallback: bool = False
    skipped: List[str] = field(default_factory=list)


class StorageAdapter(Protocol):
    """
    Protocol defining the interface for all storage backends.

    This allows swapping between SQLite and the flat JSON key-value file
    without changing the document store.

    NOTE:
    - Records are JSON-compatible dicts with a string "id".
    - Implementations store exactly capacity.serialize_record(record), so
      record_sizes() agrees with capacity.record_size().
    - Driver errors must leave the adapter as quizstore StorageError
      subclasses (BackendUnavailable, QuotaExceeded, ...).
    """

    name: str

    async def initialize(self) -> None:
        """
        Prepare the backend (create tables / files).

        Raises:
            BackendUnavailable if the backend cannot be used in this environment.
        """
        ...

    async def put(self, collection: str, record: Dict[str, Any]) -> None:
        """Insert or replace a record by its id."""
        ...

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one record.

        Returns:
            The record, or None if missing or corrupt (corruption is logged).
        """
        ...

    async def get_all(self, collection: str) -> BackendResult:
        """
        Return all decodable records of a collection.

        Returns:
            BackendResult with value=list of records and skipped=ids of
            corrupt records that were left out.
        """
        ...

    async def delete(self, collection: str, key: str) -> None:
        """Delete a record. Deleting a missing id is a no-op."""
        ...

    async def list_where(
        self,
        collection: str,
        *,
        before: Optional[float] = None,
        after: Optional[float] = None,
    ) -> BackendResult:
        """
        Range query on the collection's timestamp index (epoch seconds).
        Bounds are exclusive: `before` keeps index < before.
        """
        ...

    async def record_sizes(self, collection: str) -> Dict[str, int]:
        """Stored byte size of every record, keyed by id."""
        ...

    async def apply(self, ops: Sequence[WriteOp]) -> None:
        """
        Run a batch of puts/deletes.

        All or nothing: SQLite runs the batch in one transaction, the JSON
        file stages it in memory and commits with a single atomic replace.
        """
        ...

    async def clear(self, collection: str) -> None:
        """Remove every record of a collection."""
        ...

    async def close(self) -> None:
        ...
