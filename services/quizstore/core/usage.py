"""
Usage monitor: per-collection byte accounting over the active backend.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from cachetools import TTLCache

from ..adapters.fallback import FallbackAdapter
from ..models import UsageSnapshot
from .capacity import COLLECTIONS, compute_usage

logger = logging.getLogger(__name__)

_KEY = "usage"


class UsageMonitor:
    """
    Computes UsageSnapshot from stored record sizes.

    Stored sizes come straight from the backend (`record_sizes`), so large
    attachments are never re-serialized to be measured. A short TTL cache
    answers display reads; the capacity gate passes fresh=True.
    """

    def __init__(
        self,
        adapter: FallbackAdapter,
        capacity: int,
        near_limit_pct: float = 80.0,
        display_ttl: float = 5.0,
    ):
        self.adapter = adapter
        self.capacity = capacity
        self.near_limit_pct = near_limit_pct
        self.used_fallback = False
        self._cache: Optional[TTLCache] = TTLCache(maxsize=1, ttl=display_ttl) if display_ttl > 0 else None

    async def get_usage(self, fresh: bool = False) -> UsageSnapshot:
        if not fresh and self._cache is not None:
            cached = self._cache.get(_KEY)
            if cached is not None:
                return cached

        results = await asyncio.gather(*(self.adapter.record_sizes(c) for c in COLLECTIONS))
        self.used_fallback = any(r.used_fallback for r in results)
        sizes = {c: sum(r.value.values()) for c, r in zip(COLLECTIONS, results)}

        snapshot = compute_usage(sizes, self.capacity, self.near_limit_pct)
        if self._cache is not None:
            self._cache[_KEY] = snapshot
        logger.debug("Usage: %d / %d bytes (%.1f%%)", snapshot.total_size, snapshot.capacity, snapshot.percentage_used)
        return snapshot

    def invalidate(self) -> None:
        if self._cache is not None:
            self._cache.clear()
