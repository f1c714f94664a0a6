"""
Backend selection with per-call fallback.

The primary store is initialized once per process. Every later call goes to
the primary first; if that particular call fails it is replayed on the
fallback store and the result is flagged `used_fallback`. The next call tries
the primary again, so a transient fault never strands the session on the
fallback.

Writes the fallback served while the primary was up (puts, deletes, clears)
are replayed onto the primary before it serves its next call, so reads never
miss a record that only reached the fallback. Pending deletes live in memory;
records still in the fallback file are migrated again on the next start.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Set, Tuple

from ..core.errors import BackendUnavailable, QuotaExceeded, StorageError
from .base import COLLECTIONS, BackendResult, StorageAdapter, WriteOp, index_value

logger = logging.getLogger(__name__)


class FallbackAdapter:
    """Uniform adapter contract over a primary and a fallback backend."""

    name = "fallback"

    def __init__(self, primary: Optional[StorageAdapter], fallback: StorageAdapter):
        self.primary = primary
        self.fallback = fallback
        self.primary_active = False
        self.fallback_ready = False
        self.migrated = 0
        self._init_future: Optional[asyncio.Future] = None
        # writes the fallback served while the primary was active
        self._dirty_writes = 0
        self._pending_deletes: Set[Tuple[str, str]] = set()
        self._pending_clears: Set[str] = set()
        self._sync_future: Optional[asyncio.Future] = None

    # ---- initialization -----------------------------------------------------

    async def initialize(self) -> bool:
        """
        Initialize both backends once; concurrent callers share the attempt.

        Returns:
            True when the primary backend is active.

        Raises:
            BackendUnavailable if neither backend could be initialized.
        """
        if self._init_future is None:
            self._init_future = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_future)

    async def _initialize(self) -> bool:
        if self.primary is not None:
            try:
                await self.primary.initialize()
                self.primary_active = True
            except Exception as e:
                logger.warning("⚠️ Primary store %s unavailable, using fallback: %s", self.primary.name, e)

        try:
            await self.fallback.initialize()
            self.fallback_ready = True
        except StorageError as e:
            if not self.primary_active:
                raise BackendUnavailable(f"No storage backend could be initialized: {e}") from e
            logger.warning("Fallback store %s unavailable: %s", self.fallback.name, e)

        if self.primary_active and self.fallback_ready:
            self.migrated = await self.migrate_fallback_to_primary()
        return self.primary_active

    async def migrate_fallback_to_primary(self) -> int:
        """
        Copy records written during a degraded session into the primary, then
        remove them from the fallback. A record the primary holds in a strictly
        newer version is dropped rather than copied.
        """
        moved = 0
        for collection in COLLECTIONS:
            try:
                moved += await self._copy_collection(collection)
            except StorageError as e:
                logger.warning("Could not migrate %s from fallback store: %s", collection, e)
        if moved:
            logger.info("✅ Migrated %d record(s) from fallback to primary store", moved)
        return moved

    async def _copy_collection(self, collection: str) -> int:
        pending = (await self.fallback.get_all(collection)).value
        if not pending:
            return 0
        existing = {r["id"]: r for r in (await self.primary.get_all(collection)).value}
        ops = [
            WriteOp.put(collection, rec)
            for rec in pending
            if rec["id"] not in existing
            or index_value(collection, rec) >= index_value(collection, existing[rec["id"]])
        ]
        if ops:
            await self.primary.apply(ops)
        await self.fallback.apply([WriteOp.delete(collection, str(rec["id"])) for rec in pending])
        return len(ops)

    # ---- writes served by the fallback while the primary is active ----------

    def _has_pending(self) -> bool:
        return bool(self._dirty_writes or self._pending_deletes or self._pending_clears)

    def _record_fallback_write(self, op: str, args: Sequence[Any]) -> None:
        if op == "put":
            collection, record = args
            self._pending_deletes.discard((collection, str(record["id"])))
            self._dirty_writes += 1
        elif op == "delete":
            collection, key = args
            self._pending_deletes.add((collection, key))
        elif op == "apply":
            for write in args[0]:
                if write.kind == "put":
                    self._pending_deletes.discard((write.collection, write.key))
                    self._dirty_writes += 1
                else:
                    self._pending_deletes.add((write.collection, write.key))

    async def _ensure_synced(self) -> None:
        """Replay fallback-served writes onto the primary; concurrent callers share one run."""
        if not self._has_pending():
            return
        if self._sync_future is None:
            self._sync_future = asyncio.ensure_future(self._sync_pending())
            self._sync_future.add_done_callback(self._sync_finished)
        await asyncio.shield(self._sync_future)

    def _sync_finished(self, future: asyncio.Future) -> None:
        self._sync_future = None
        if not future.cancelled():
            future.exception()

    async def _sync_pending(self) -> None:
        clears = set(self._pending_clears)
        deletes = set(self._pending_deletes)
        dirty = self._dirty_writes

        for collection in clears:
            await self.primary.clear(collection)
        if deletes:
            await self.primary.apply([WriteOp.delete(c, k) for c, k in sorted(deletes)])
        moved = 0
        if dirty:
            for collection in COLLECTIONS:
                moved += await self._copy_collection(collection)

        self._pending_clears -= clears
        self._pending_deletes -= deletes
        if self._dirty_writes == dirty:
            self._dirty_writes = 0
        logger.info(
            "✅ Synced fallback writes to primary store (%d put, %d delete, %d clear)",
            moved, len(deletes), len(clears),
        )

    # ---- dispatch -----------------------------------------------------------

    @staticmethod
    def _wrap(value: Any, used_fallback: bool) -> BackendResult:
        if isinstance(value, BackendResult):
            value.used_fallback = used_fallback
            return value
        return BackendResult(value=value, used_fallback=used_fallback)

    async def _call(self, op: str, *args: Any, **kwargs: Any) -> BackendResult:
        await self.initialize()

        primary_error: Optional[BaseException] = None
        if self.primary_active:
            try:
                await self._ensure_synced()
            except Exception as e:
                primary_error = e
                logger.warning("Primary store still behind the fallback (%s); serving %s from fallback", e, op)
            if primary_error is None:
                try:
                    value = await getattr(self.primary, op)(*args, **kwargs)
                    return self._wrap(value, used_fallback=False)
                except QuotaExceeded:
                    raise
                except Exception as e:
                    primary_error = e
                    logger.warning("Primary store %s failed (%s); retrying on fallback", op, e)

        if not self.fallback_ready:
            raise BackendUnavailable(f"{op} failed and no fallback store is available: {primary_error}")

        try:
            value = await getattr(self.fallback, op)(*args, **kwargs)
        except QuotaExceeded:
            raise
        except StorageError as e:
            raise BackendUnavailable(
                f"{op} failed on every backend: {e}",
                detail={"primary": str(primary_error) if primary_error else None, "fallback": str(e)},
            ) from e
        if self.primary_active:
            self._record_fallback_write(op, args)
        return self._wrap(value, used_fallback=True)

    async def put(self, collection: str, record: Dict[str, Any]) -> BackendResult:
        return await self._call("put", collection, record)

    async def get(self, collection: str, key: str) -> BackendResult:
        return await self._call("get", collection, key)

    async def get_all(self, collection: str) -> BackendResult:
        return await self._call("get_all", collection)

    async def delete(self, collection: str, key: str) -> BackendResult:
        return await self._call("delete", collection, key)

    async def list_where(
        self,
        collection: str,
        *,
        before: Optional[float] = None,
        after: Optional[float] = None,
    ) -> BackendResult:
        return await self._call("list_where", collection, before=before, after=after)

    async def record_sizes(self, collection: str) -> BackendResult:
        return await self._call("record_sizes", collection)

    async def apply(self, ops: Sequence[WriteOp]) -> BackendResult:
        return await self._call("apply", list(ops))

    async def clear(self, collection: str) -> BackendResult:
        """Wipe the collection on both backends."""
        await self.initialize()
        used_fallback = not self.primary_active
        if self.fallback_ready:
            await self.fallback.clear(collection)
        if self.primary_active:
            try:
                await self.primary.clear(collection)
            except StorageError as e:
                logger.warning("Primary store clear(%s) failed: %s", collection, e)
                if not self.fallback_ready:
                    raise BackendUnavailable(f"clear failed on every backend: {e}") from e
                self._pending_clears.add(collection)
                self._pending_deletes = {p for p in self._pending_deletes if p[0] != collection}
                used_fallback = True
        return BackendResult(used_fallback=used_fallback)

    async def close(self) -> None:
        if self.primary is not None:
            await self.primary.close()
        await self.fallback.close()

    @property
    def active_backend(self) -> str:
        return self.primary.name if self.primary_active and self.primary is not None else self.fallback.name
