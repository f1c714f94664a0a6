"""
Document store: finished quizzes, drafts, and their media.

Built on the backend adapter. Every multi-record change goes out as one
`apply` batch so it lands atomically on either backend.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from ..adapters.base import BackendResult, WriteOp
from ..adapters.fallback import FallbackAdapter
from ..models import Draft, Quiz, new_attachment_id, next_timestamp, utc_now
from ..models.converters import attachment_from_record, draft_from_record, quiz_from_record
from .capacity import estimate_size
from .errors import CapacityExceeded, CorruptRecord
from .usage import UsageMonitor
from .validation import ensure_unique_attachment_ids, validate_attachments

logger = logging.getLogger(__name__)

METADATA_ID = "app_metadata"
METADATA_VERSION = "1.0.0"


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


class DocumentStore:
    """
    Finished records, drafts and attachments over one FallbackAdapter.

    Methods return the model(s) or a BackendResult so callers can tell
    when the fallback backend served them.
    """

    def __init__(
        self,
        adapter: FallbackAdapter,
        usage: UsageMonitor,
        attachment_limits: Mapping[str, int],
        clock: Callable[[], datetime] = utc_now,
    ):
        self.adapter = adapter
        self.usage = usage
        self.attachment_limits = dict(attachment_limits)
        self.clock = clock

    # ---- finished records ---------------------------------------------------

    async def save_document(self, quiz: Quiz, *, replacing_draft: bool = False) -> BackendResult:
        """
        Persist a finished quiz together with its attachments.

        Raises:
            AttachmentTooLarge: a media item exceeds its type ceiling
            CapacityExceeded: the write would cross the total capacity;
                nothing is written
        """
        media = quiz.attachments()
        validate_attachments(media, self.attachment_limits)
        ensure_unique_attachment_ids(media)

        previous = await self.adapter.get("quizzes", quiz.id)
        prev_record = previous.value or {}
        quiz = await self._claim_attachments(quiz, owned=set(self._referenced_attachment_ids(prev_record)))

        stamped = quiz.model_copy(
            update={
                "status": "finished",
                "updated_at": next_timestamp(self.clock(), _parse_ts(prev_record.get("updated_at"))),
            }
        )
        doc, attachment_records = stamped.to_storage()

        required = estimate_size(stamped)
        snapshot = await self.usage.get_usage(fresh=True)
        if snapshot.total_size + required > snapshot.capacity:
            raise CapacityExceeded(
                f"Saving '{quiz.title}' needs {required} bytes but only "
                f"{snapshot.remaining_space} bytes are free. Delete old quizzes or drafts to free space.",
                required=required,
                available=snapshot.remaining_space,
            )

        ops: List[WriteOp] = [WriteOp.put("attachments", a) for a in attachment_records]
        if prev_record:
            kept = set(stamped.attachment_ids())
            for old_id in self._referenced_attachment_ids(prev_record):
                if old_id not in kept:
                    ops.append(WriteOp.delete("attachments", old_id))
        ops.append(WriteOp.put("quizzes", doc))
        if replacing_draft:
            ops.append(WriteOp.delete("drafts", quiz.id))

        result = await self.adapter.apply(ops)
        self.usage.invalidate()
        logger.info(
            "Saved quiz %s (%d bytes, %d attachment(s))%s",
            quiz.id,
            required,
            len(attachment_records),
            " via fallback" if result.used_fallback else "",
        )
        result.value = stamped
        return result

    async def _claim_attachments(self, quiz: Quiz, owned: Set[str]) -> Quiz:
        """
        Keep attachment records exclusive to one quiz.

        Media whose id is already stored for another quiz gets a fresh id
        when it carries its bytes; a bare reference to another quiz's
        attachment is rejected.
        """
        taken: Set[str] = set()
        for media in quiz.attachments():
            if media.id in owned:
                continue
            existing = await self.adapter.get("attachments", media.id)
            if existing.value is None:
                continue
            if media.payload is None:
                raise ValueError(f"Attachment {media.id} belongs to another quiz")
            taken.add(media.id)
        if not taken:
            return quiz

        renamed = {old_id: new_attachment_id() for old_id in taken}
        claimed = quiz.model_copy(deep=True)
        for media in claimed.attachments():
            if media.id in renamed:
                media.id = renamed[media.id]
        logger.info("Quiz %s re-keyed attachment(s) already stored for another quiz: %s", quiz.id, renamed)
        return claimed

    @staticmethod
    def _referenced_attachment_ids(record: Dict[str, Any]) -> List[str]:
        ids = []
        for rnd in record.get("rounds") or []:
            for q in rnd.get("questions") or []:
                media = q.get("media")
                if isinstance(media, dict) and media.get("id"):
                    ids.append(str(media["id"]))
        return ids

    async def load_documents(self) -> BackendResult:
        result = await self.adapter.get_all("quizzes")
        result.value = self._convert(result, quiz_from_record)
        return result

    async def load_document(self, quiz_id: str, hydrate: bool = True) -> BackendResult:
        """
        Fetch one quiz; with `hydrate` the attachment payloads are filled in.
        value is None when the id is unknown or the record is unreadable.
        """
        result = await self.adapter.get("quizzes", quiz_id)
        if result.value is None:
            return result
        try:
            quiz = quiz_from_record(result.value)
        except CorruptRecord as e:
            logger.warning("Skipping %s", e)
            result.value = None
            return result

        if hydrate:
            payloads: Dict[str, Optional[bytes]] = {}
            for attachment_id in quiz.attachment_ids():
                got = await self.adapter.get("attachments", attachment_id)
                result.used_fallback = result.used_fallback or got.used_fallback
                if got.value is None:
                    logger.warning("Quiz %s references missing attachment %s", quiz_id, attachment_id)
                    continue
                try:
                    payloads[attachment_id] = attachment_from_record(got.value).payload
                except CorruptRecord as e:
                    logger.warning("Skipping %s", e)
            quiz = quiz.with_payloads(payloads)
        result.value = quiz
        return result

    async def delete_document(self, quiz_id: str, *, with_draft: bool = False) -> BackendResult:
        """
        Delete a quiz and its attachments in one batch; `with_draft` also
        removes a draft sharing the id. Unknown ids are a successful no-op.
        """
        previous = await self.adapter.get("quizzes", quiz_id)
        ops: List[WriteOp] = []
        if previous.value is not None:
            ops.extend(
                WriteOp.delete("attachments", a)
                for a in self._referenced_attachment_ids(previous.value)
            )
            ops.append(WriteOp.delete("quizzes", quiz_id))
        if with_draft:
            ops.append(WriteOp.delete("drafts", quiz_id))
        if not ops:
            return previous

        result = await self.adapter.apply(ops)
        result.used_fallback = result.used_fallback or previous.used_fallback
        self.usage.invalidate()
        logger.info("🗑️ Deleted quiz %s (%d op(s))", quiz_id, len(ops))
        return result

    # ---- drafts -------------------------------------------------------------

    async def save_draft(self, draft: Draft) -> BackendResult:
        """Unconditional write, stamped with a strictly increasing last_saved."""
        validate_attachments(draft.attachments(), self.attachment_limits)

        previous = await self.adapter.get("drafts", draft.id)
        prev_saved = _parse_ts((previous.value or {}).get("last_saved"))
        stamped = draft.model_copy(
            update={"last_saved": next_timestamp(self.clock(), prev_saved), "is_draft": True, "status": "draft"}
        )
        result = await self.adapter.put("drafts", stamped.to_storage())
        self.usage.invalidate()
        logger.debug("Draft %s saved at %s", draft.id, stamped.last_saved)
        result.value = stamped
        return result

    async def load_drafts(self) -> BackendResult:
        result = await self.adapter.get_all("drafts")
        result.value = self._convert(result, draft_from_record)
        return result

    async def load_draft(self, draft_id: str) -> BackendResult:
        result = await self.adapter.get("drafts", draft_id)
        if result.value is not None:
            try:
                result.value = draft_from_record(result.value)
            except CorruptRecord as e:
                logger.warning("Skipping %s", e)
                result.value = None
        return result

    async def delete_draft(self, draft_id: str) -> BackendResult:
        result = await self.adapter.delete("drafts", draft_id)
        self.usage.invalidate()
        return result

    async def delete_drafts(self, draft_ids: List[str]) -> BackendResult:
        result = await self.adapter.apply([WriteOp.delete("drafts", d) for d in draft_ids])
        self.usage.invalidate()
        return result

    async def list_drafts_before(self, cutoff: datetime) -> BackendResult:
        """Drafts whose last_saved is strictly older than `cutoff`."""
        result = await self.adapter.list_where("drafts", before=cutoff.timestamp())
        result.value = self._convert(result, draft_from_record)
        return result

    # ---- maintenance --------------------------------------------------------

    async def clear_all(self) -> BackendResult:
        used_fallback = False
        for collection in ("attachments", "quizzes", "drafts", "metadata"):
            result = await self.adapter.clear(collection)
            used_fallback = used_fallback or result.used_fallback
        self.usage.invalidate()
        logger.warning("All quiz storage cleared")
        return BackendResult(used_fallback=used_fallback)

    async def read_metadata(self) -> Dict[str, Any]:
        result = await self.adapter.get("metadata", METADATA_ID)
        return result.value or {}

    async def write_metadata(self, **fields: Any) -> Dict[str, Any]:
        """Merge `fields` into the app_metadata record."""
        record = await self.read_metadata()
        now = self.clock().isoformat()
        record.setdefault("id", METADATA_ID)
        record.setdefault("version", METADATA_VERSION)
        record.setdefault("created_at", now)
        record["last_sync"] = now
        record.update({k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in fields.items()})
        await self.adapter.put("metadata", record)
        return record

    @staticmethod
    def _convert(result: BackendResult, converter) -> list:
        items = []
        for row in result.value or []:
            try:
                items.append(converter(row))
            except CorruptRecord as e:
                logger.warning("Skipping %s", e)
                result.skipped.append(e.record_id)
        return items
