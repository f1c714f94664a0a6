# services/quizstore/adapters/sqlite/__init__.py
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import (
    Column,
    Float,
    Index,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    cast,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ...core.capacity import serialize_record
from ...core.errors import BackendUnavailable, CorruptRecord, QuotaExceeded
from ...models.converters import parse_record
from ..base import COLLECTIONS, BackendResult, WriteOp, check_collection, index_value

logger = logging.getLogger(__name__)

# ---- Engine (SQLite, async) with WAL & pragmas -------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)

def make_engine(db_url: str) -> AsyncEngine:
    # Create data dir if sqlite file
    if "sqlite" in db_url and ":///" in db_url:
        file_path = db_url.split(":///", 1)[1]
        if file_path and file_path != ":memory:":
            _ensure_dir(file_path)

    engine = create_async_engine(db_url, future=True)

    # Apply pragmas per-connection
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA temp_store=MEMORY;")
        cursor.close()

    return engine

# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

def _collection_table(name: str) -> Table:
    # Every collection shares one shape: id, timestamp index, serialized record
    return Table(
        name,
        metadata,
        Column("id", String, primary_key=True),
        Column("indexed_at", Float, nullable=False, default=0.0),
        Column("data", Text, nullable=False),
        Index(f"idx_{name}_indexed_at", "indexed_at"),
    )

TABLES: Dict[str, Table] = {name: _collection_table(name) for name in COLLECTIONS}

# ---- Adapter implementation --------------------------------------------------

@dataclass(frozen=True)
class SqliteAdapter:
    """
    Primary backend: transactional, multi-collection, indexed.
    Every batch passed to apply() runs inside a single transaction.
    """

    engine: AsyncEngine
    name: str = "sqlite"

    @classmethod
    def from_url(cls, db_url: str = "sqlite+aiosqlite:///data/quizstore.db") -> "SqliteAdapter":
        return cls(engine=make_engine(db_url))

    @asynccontextmanager
    async def _begin(self) -> AsyncIterator[AsyncConnection]:
        """engine.begin() with driver errors converted to the storage taxonomy."""
        try:
            async with self.engine.begin() as conn:
                yield conn
        except OperationalError as e:
            msg = str(e.orig if e.orig is not None else e)
            if "full" in msg.lower():
                raise QuotaExceeded(f"SQLite store is full: {msg}") from e
            raise BackendUnavailable(f"SQLite operational error: {msg}") from e
        except SQLAlchemyError as e:
            raise BackendUnavailable(f"SQLite error: {e}") from e
        except OSError as e:
            raise BackendUnavailable(f"SQLite file error: {e}") from e

    async def initialize(self) -> None:
        async with self._begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("SQLite store ready (%s)", self.engine.url)

    # Single-record operations

    async def put(self, collection: str, record: Dict[str, Any]) -> None:
        await self.apply([WriteOp.put(collection, record)])

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        check_collection(collection)
        t = TABLES[collection]
        async with self._begin() as conn:
            raw = (await conn.execute(select(t.c.data).where(t.c.id == key))).scalar_one_or_none()
        if raw is None:
            return None
        try:
            return parse_record(collection, key, raw)
        except CorruptRecord as e:
            logger.warning("Skipping %s", e)
            return None

    async def delete(self, collection: str, key: str) -> None:
        await self.apply([WriteOp.delete(collection, key)])

    # Listing

    def _decode_rows(self, collection: str, rows) -> BackendResult:
        records: List[Dict[str, Any]] = []
        skipped: List[str] = []
        for row in rows:
            try:
                records.append(parse_record(collection, row.id, row.data))
            except CorruptRecord as e:
                logger.warning("Skipping %s", e)
                skipped.append(row.id)
        return BackendResult(value=records, skipped=skipped)

    async def get_all(self, collection: str) -> BackendResult:
        check_collection(collection)
        t = TABLES[collection]
        async with self._begin() as conn:
            rows = (await conn.execute(select(t.c.id, t.c.data).order_by(t.c.indexed_at.asc()))).all()
        return self._decode_rows(collection, rows)

    async def list_where(
        self,
        collection: str,
        *,
        before: Optional[float] = None,
        after: Optional[float] = None,
    ) -> BackendResult:
        check_collection(collection)
        t = TABLES[collection]
        q = select(t.c.id, t.c.data)
        if before is not None:
            q = q.where(t.c.indexed_at < before)
        if after is not None:
            q = q.where(t.c.indexed_at > after)
        async with self._begin() as conn:
            rows = (await conn.execute(q.order_by(t.c.indexed_at.asc()))).all()
        return self._decode_rows(collection, rows)

    async def record_sizes(self, collection: str) -> Dict[str, int]:
        check_collection(collection)
        t = TABLES[collection]
        # length() of a BLOB counts bytes, of TEXT counts characters
        q = select(t.c.id, func.length(cast(t.c.data, LargeBinary)))
        async with self._begin() as conn:
            rows = (await conn.execute(q)).all()
        return {r[0]: int(r[1] or 0) for r in rows}

    # Batches (atomic)

    async def apply(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        for op in ops:
            check_collection(op.collection)
        async with self._begin() as conn:
            for op in ops:
                t = TABLES[op.collection]
                if op.kind == "put":
                    stmt = sqlite_insert(t).values(
                        id=op.key,
                        indexed_at=index_value(op.collection, op.record or {}),
                        data=serialize_record(op.record or {}),
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[t.c.id],
                        set_={"indexed_at": stmt.excluded.indexed_at, "data": stmt.excluded.data},
                    )
                    await conn.execute(stmt)
                else:
                    await conn.execute(delete(t).where(t.c.id == op.key))

    async def clear(self, collection: str) -> None:
        check_collection(collection)
        async with self._begin() as conn:
            await conn.execute(delete(TABLES[collection]))

    async def close(self) -> None:
        await self.engine.dispose()
