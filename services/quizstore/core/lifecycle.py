"""
Draft lifecycle: promotion to a finished quiz, aging and recovery.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from ..adapters.base import BackendResult
from ..models import Draft, Quiz
from .document_store import DocumentStore

logger = logging.getLogger(__name__)


class LifecycleManager:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def promote(self, draft_id: str, finished: Quiz) -> BackendResult:
        """
        Save `finished` and delete the draft sharing its id in one batch.
        If the save is refused (capacity, backend), the draft is untouched.
        """
        if finished.id != draft_id:
            raise ValueError(f"Cannot promote draft {draft_id} into quiz {finished.id}: ids differ")
        result = await self.store.save_document(finished, replacing_draft=True)
        logger.info("✅ Draft %s promoted to finished quiz", draft_id)
        return result

    async def cleanup_aged(self, max_age_days: float) -> int:
        """
        Delete drafts whose last_saved is strictly older than
        now - max_age_days. Finished quizzes are never touched.
        """
        cutoff = self.store.clock() - timedelta(days=max_age_days)
        aged = await self.store.list_drafts_before(cutoff)
        ids = [d.id for d in aged.value]
        if ids:
            await self.store.delete_drafts(ids)
        await self.store.write_metadata(last_cleanup=self.store.clock())
        logger.info("Cleaned up %d draft(s) older than %s days", len(ids), max_age_days)
        return len(ids)

    async def recover_latest_draft(self) -> Optional[Draft]:
        drafts = (await self.store.load_drafts()).value
        if not drafts:
            return None
        return max(drafts, key=lambda d: d.last_saved.timestamp() if d.last_saved else 0.0)
