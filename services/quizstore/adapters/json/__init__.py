"""
JSON file storage adapter for quizstore.
Flat key-value fallback used when the SQLite store is unavailable.
Not production-ready (no proper locking, not suitable for concurrent access).
"""
from __future__ import annotations

import errno
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ...core.capacity import serialize_record
from ...core.errors import BackendUnavailable, CorruptRecord, QuotaExceeded
from ...models.converters import parse_record
from ..base import BackendResult, WriteOp, check_collection, index_value

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


def _key(collection: str, record_id: str) -> str:
    return f"{collection}/{record_id}"


class JsonAdapter:
    """
    JSON file-based key-value store.

    Every record lives under the key "<collection>/<id>" in a single
    kv.json file; values are the serialized record strings. The file is
    rewritten atomically (temp file + rename) on every mutation, and the
    sum of key and value bytes may not exceed `quota_bytes`.
    """

    name = "json"

    def __init__(self, data_dir: str = "data", quota_bytes: int = DEFAULT_QUOTA_BYTES):
        """
        Initialize the JSON adapter.

        Args:
            data_dir: Directory holding kv.json
            quota_bytes: Hard ceiling on stored bytes
        """
        self.data_dir = Path(data_dir)
        self.kv_file = self.data_dir / "kv.json"
        self.quota_bytes = quota_bytes
        self._cache: Optional[Dict[str, str]] = None
        self._cache_stamp: Optional[Tuple[int, int]] = None

    # ---- file helpers -------------------------------------------------------

    def _stamp(self) -> Optional[Tuple[int, int]]:
        try:
            st = self.kv_file.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendUnavailable(f"Cannot stat {self.kv_file}: {e}") from e
        return st.st_mtime_ns, st.st_size

    def _read_file(self) -> Dict[str, str]:
        """
        Return a copy of the parsed kv.json. The parse is cached until the
        file's mtime or size changes. A damaged file is moved aside, not fatal.
        """
        stamp = self._stamp()
        if stamp is None:
            self._cache = None
            return {}
        if self._cache is not None and stamp == self._cache_stamp:
            return dict(self._cache)

        try:
            with open(self.kv_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            aside = self.kv_file.with_suffix(".corrupt")
            logger.error("⚠️ %s is not valid JSON (%s); moved to %s", self.kv_file, e, aside)
            try:
                self.kv_file.replace(aside)
            except OSError as move_err:
                raise BackendUnavailable(f"Cannot move damaged {self.kv_file}: {move_err}") from move_err
            return {}
        except OSError as e:
            raise BackendUnavailable(f"Cannot read {self.kv_file}: {e}") from e

        if not isinstance(data, dict):
            logger.error("⚠️ %s does not hold an object; starting empty", self.kv_file)
            return {}
        self._cache = {k: v for k, v in data.items() if isinstance(v, str)}
        self._cache_stamp = stamp
        return dict(self._cache)

    def _write_file(self, data: Dict[str, str]) -> None:
        """Write the whole store atomically."""
        used = self._bytes_used(data)
        if used > self.quota_bytes:
            raise QuotaExceeded(
                f"Fallback store quota exceeded ({used} > {self.quota_bytes} bytes)",
                detail={"used": used, "quota": self.quota_bytes},
            )

        tmp_file = self.kv_file.with_suffix(".tmp")
        try:
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            tmp_file.replace(self.kv_file)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            if e.errno == errno.ENOSPC:
                raise QuotaExceeded(f"No space left for {self.kv_file}") from e
            raise BackendUnavailable(f"Cannot write {self.kv_file}: {e}") from e
        self._cache = dict(data)
        self._cache_stamp = self._stamp()

    @staticmethod
    def _bytes_used(data: Dict[str, str]) -> int:
        return sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in data.items())

    def _records(self, collection: str, data: Dict[str, str]) -> List[tuple]:
        prefix = f"{collection}/"
        return [(k[len(prefix):], v) for k, v in data.items() if k.startswith(prefix)]

    def _decode(self, collection: str, items) -> BackendResult:
        records: List[Dict[str, Any]] = []
        skipped: List[str] = []
        for record_id, raw in items:
            try:
                records.append(parse_record(collection, record_id, raw))
            except CorruptRecord as e:
                logger.warning("Skipping %s", e)
                skipped.append(record_id)
        records.sort(key=lambda r: index_value(collection, r))
        return BackendResult(value=records, skipped=skipped)

    # ---- adapter contract ---------------------------------------------------

    async def initialize(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailable(f"Cannot create {self.data_dir}: {e}") from e
        if not self.kv_file.exists():
            self._write_file({})
        logger.info("JSON fallback store ready (%s)", self.kv_file)

    async def put(self, collection: str, record: Dict[str, Any]) -> None:
        await self.apply([WriteOp.put(collection, record)])

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        check_collection(collection)
        raw = self._read_file().get(_key(collection, key))
        if raw is None:
            return None
        try:
            return parse_record(collection, key, raw)
        except CorruptRecord as e:
            logger.warning("Skipping %s", e)
            return None

    async def get_all(self, collection: str) -> BackendResult:
        check_collection(collection)
        return self._decode(collection, self._records(collection, self._read_file()))

    async def delete(self, collection: str, key: str) -> None:
        await self.apply([WriteOp.delete(collection, key)])

    async def list_where(
        self,
        collection: str,
        *,
        before: Optional[float] = None,
        after: Optional[float] = None,
    ) -> BackendResult:
        result = await self.get_all(collection)
        kept = []
        for record in result.value:
            ts = index_value(collection, record)
            if before is not None and not ts < before:
                continue
            if after is not None and not ts > after:
                continue
            kept.append(record)
        result.value = kept
        return result

    async def record_sizes(self, collection: str) -> Dict[str, int]:
        check_collection(collection)
        return {
            record_id: len(raw.encode("utf-8"))
            for record_id, raw in self._records(collection, self._read_file())
        }

    async def apply(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        for op in ops:
            check_collection(op.collection)

        # Stage on a copy; the file is replaced once or not at all
        data = self._read_file()
        for op in ops:
            key = _key(op.collection, op.key)
            if op.kind == "put":
                data[key] = serialize_record(op.record or {})
            else:
                data.pop(key, None)
        self._write_file(data)

    async def clear(self, collection: str) -> None:
        check_collection(collection)
        prefix = f"{collection}/"
        data = self._read_file()
        self._write_file({k: v for k, v in data.items() if not k.startswith(prefix)})

    async def close(self) -> None:
        return None

    def bytes_used(self) -> int:
        return self._bytes_used(self._read_file())
