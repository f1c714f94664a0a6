"""
Synchronization layer: the one object the editing UI talks to.

Every public operation is queued behind the previous one, so a mutation and
the reload of all derived views (documents, drafts, usage) finish before the
next operation starts. Operations never raise; they return OperationResult
(or a value) and record dismissible notices.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import uuid4

from cachetools import TTLCache

from ..adapters.base import BackendResult
from ..adapters.fallback import FallbackAdapter
from ..adapters.json import JsonAdapter
from ..adapters.sqlite import SqliteAdapter
from ..models import Draft, Notice, OperationResult, Quiz, UsageSnapshot, utc_now
from ..settings import Settings, get_settings
from .autosave import AutoSaveScheduler, AutoSaveState
from .document_store import DocumentStore
from .errors import RecordDeleted, StorageError
from .events import RECORD_DELETED, BroadcastChannel, ChannelEvent, get_channel
from .lifecycle import LifecycleManager
from .usage import UsageMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_NOTICES = 50
FALLBACK_NOTICE = (
    "Primary storage is unavailable; your quizzes are being kept in the "
    "local fallback store."
)


def build_adapter(settings: Settings) -> FallbackAdapter:
    primary = SqliteAdapter.from_url(settings.db_url) if settings.primary_enabled else None
    fallback = JsonAdapter(settings.data_dir, quota_bytes=settings.fallback_quota_bytes)
    return FallbackAdapter(primary, fallback)


class QuizStorageService:
    """
    Façade over the document store, usage monitor, lifecycle manager and
    auto-save scheduler.

    State exposed to views: `documents`, `drafts`, `usage`, `sync_status`,
    `notices`, and `autosave_state`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        adapter: Optional[FallbackAdapter] = None,
        channel: Optional[BroadcastChannel] = None,
        clock: Callable[[], datetime] = utc_now,
        instance_id: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.adapter = adapter or build_adapter(s)
        self.usage_monitor = UsageMonitor(
            self.adapter,
            capacity=s.total_capacity_bytes,
            near_limit_pct=s.near_limit_pct,
            display_ttl=s.usage_display_ttl_seconds,
        )
        self.store = DocumentStore(self.adapter, self.usage_monitor, s.attachment_limits(), clock=clock)
        self.lifecycle = LifecycleManager(self.store)

        self.instance_id = instance_id or uuid4().hex[:8]
        self.channel = channel or get_channel(s.broadcast_channel)
        self._unsubscribe = self.channel.subscribe(self._on_channel_event, token=self.instance_id)

        self.documents: List[Quiz] = []
        self.drafts: List[Draft] = []
        self.usage = UsageSnapshot(capacity=s.total_capacity_bytes, remaining_space=s.total_capacity_bytes)
        self.sync_status = "idle"
        self.notices: List[Notice] = []
        self.autosave: Optional[AutoSaveScheduler] = None
        self.primary_active = False
        self.initialized = False

        self._tail: Optional[asyncio.Future] = None
        self._tombstones: TTLCache = TTLCache(maxsize=1024, ttl=s.deleted_tombstone_ttl_seconds)
        self._fallback_notified = False
        self._near_limit_notified = False
        self._status_reset: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[["QuizStorageService"], Any]] = []

    # ---- serialization ------------------------------------------------------

    async def _serialized(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` after every previously queued one has finished.
        The operation is shielded: a cancelled caller stops waiting, the
        operation itself still runs to completion and keeps its place.
        """
        loop = asyncio.get_running_loop()
        previous, done = self._tail, loop.create_future()
        self._tail = done

        async def run() -> T:
            if previous is not None:
                await previous
            return await operation()

        task = asyncio.ensure_future(run())
        task.add_done_callback(lambda _: done.done() or done.set_result(None))
        return await asyncio.shield(task)

    async def _refresh(self) -> bool:
        """Reload documents, drafts and usage together."""
        docs, drafts, usage = await asyncio.gather(
            self.store.load_documents(),
            self.store.load_drafts(),
            self.usage_monitor.get_usage(fresh=True),
        )
        self.documents = docs.value
        self.drafts = drafts.value
        self.usage = usage
        self._check_near_limit()
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Storage listener failed")
        return docs.used_fallback or drafts.used_fallback or self.usage_monitor.used_fallback

    async def _mutate(
        self,
        label: str,
        action: Callable[[], Awaitable[BackendResult]],
        *,
        record_id: Optional[str] = None,
        after: Optional[Callable[[], None]] = None,
    ) -> OperationResult:
        async def op() -> OperationResult:
            self._set_sync_status("syncing")
            try:
                result = await action()
            except Exception as e:
                return self._fail(label, e, record_id)

            if after is not None:
                after()
            used_fallback = result.used_fallback
            try:
                used_fallback = await self._refresh() or used_fallback
            except StorageError as e:
                # the write landed; only the views are stale
                logger.error("Reload after %s failed: %s", label, e)
                self._set_sync_status("error")
                self._add_notice("warning", f"Saved, but the list could not be refreshed: {e.message}")
                return OperationResult(success=True, used_fallback=used_fallback, id=record_id)

            self._note_fallback(used_fallback)
            self._set_sync_status("synced")
            return OperationResult(success=True, used_fallback=used_fallback, id=record_id)

        return await self._serialized(op)

    def _fail(self, label: str, error: Exception, record_id: Optional[str]) -> OperationResult:
        if isinstance(error, StorageError):
            code, message = error.code, error.message
            logger.warning("%s failed: %s", label, message)
        elif isinstance(error, ValueError):
            code, message = "invalid_request", str(error)
            logger.warning("%s rejected: %s", label, message)
        else:
            code, message = "internal_error", f"{label} failed unexpectedly"
            logger.exception("%s failed", label)
        self._set_sync_status("error")
        self._add_notice("error", message)
        return OperationResult(success=False, error=message, error_code=code, id=record_id)

    # ---- status / notices ---------------------------------------------------

    def _set_sync_status(self, status: str) -> None:
        if self._status_reset is not None:
            self._status_reset.cancel()
            self._status_reset = None
        self.sync_status = status
        if status == "synced":
            loop = asyncio.get_running_loop()
            self._status_reset = loop.call_later(self.settings.sync_status_reset_seconds, self._reset_sync_status)

    def _reset_sync_status(self) -> None:
        self._status_reset = None
        if self.sync_status == "synced":
            self.sync_status = "idle"

    def _add_notice(self, level: str, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self.notices.append(notice)
        del self.notices[:-MAX_NOTICES]
        return notice

    def dismiss_notice(self, notice_id: str) -> bool:
        before = len(self.notices)
        self.notices = [n for n in self.notices if n.id != notice_id]
        return len(self.notices) < before

    def _note_fallback(self, used_fallback: bool) -> None:
        if used_fallback and not self._fallback_notified:
            self._fallback_notified = True
            logger.info("ℹ️ Falling back to %s store", self.adapter.fallback.name)
            self._add_notice("info", FALLBACK_NOTICE)

    def _check_near_limit(self) -> None:
        if self.usage.is_near_limit and not self._near_limit_notified:
            self._near_limit_notified = True
            self._add_notice(
                "warning",
                f"Storage is {self.usage.percentage_used:.0f}% full. "
                "Delete old quizzes or drafts to free space.",
            )
        elif not self.usage.is_near_limit:
            self._near_limit_notified = False

    def subscribe(self, listener: Callable[["QuizStorageService"], Any]) -> Callable[[], None]:
        """Call `listener(service)` after every reload of the derived views."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- lifecycle of the service -------------------------------------------

    async def initialize_storage(self) -> bool:
        """True when the primary backend is active, False on the fallback."""

        async def op() -> bool:
            self._set_sync_status("syncing")
            try:
                self.primary_active = await self.adapter.initialize()
                await self.store.write_metadata()
                used_fallback = await self._refresh()
            except StorageError as e:
                logger.error("❌ Storage could not be initialized: %s", e)
                self._set_sync_status("error")
                self._add_notice("error", f"Storage is unavailable: {e.message}")
                return False
            self.initialized = True
            self._note_fallback(used_fallback or not self.primary_active)
            self._set_sync_status("synced")
            logger.info("✅ Storage ready on %s", self.adapter.active_backend)
            return self.primary_active

        return await self._serialized(op)

    async def close(self) -> None:
        self._unsubscribe()
        self.disable_autosave()
        if self._status_reset is not None:
            self._status_reset.cancel()
        if self._tail is not None:
            await self._tail
        await self.adapter.close()

    # ---- documents ----------------------------------------------------------

    async def save_document(self, quiz: Quiz) -> OperationResult:
        # explicitly saving a quiz again restarts editing of a deleted id
        self._tombstones.pop(quiz.id, None)
        return await self._mutate("Saving quiz", lambda: self.store.save_document(quiz), record_id=quiz.id)

    async def load_documents(self) -> List[Quiz]:
        await self._reload("Loading quizzes")
        return list(self.documents)

    async def load_document(self, quiz_id: str) -> Optional[Quiz]:
        result = await self._read("Loading quiz", lambda: self.store.load_document(quiz_id))
        return result.value if result is not None else None

    async def delete_document(self, quiz_id: str) -> OperationResult:
        """Delete a quiz, its media and any draft with the same id."""

        def after() -> None:
            self._tombstones[quiz_id] = True
            self._cancel_autosave_for(quiz_id)
            self.channel.publish(ChannelEvent(RECORD_DELETED, quiz_id, sender=self.instance_id))

        return await self._mutate(
            "Deleting quiz",
            lambda: self.store.delete_document(quiz_id, with_draft=True),
            record_id=quiz_id,
            after=after,
        )

    # ---- drafts -------------------------------------------------------------

    async def save_draft(self, draft: Draft) -> OperationResult:
        async def action() -> BackendResult:
            if draft.id in self._tombstones:
                raise RecordDeleted(draft.id)
            return await self.store.save_draft(draft)

        return await self._mutate("Saving draft", action, record_id=draft.id)

    async def load_drafts(self) -> List[Draft]:
        await self._reload("Loading drafts")
        return list(self.drafts)

    async def load_draft(self, draft_id: str) -> Optional[Draft]:
        result = await self._read("Loading draft", lambda: self.store.load_draft(draft_id))
        return result.value if result is not None else None

    async def delete_draft(self, draft_id: str) -> OperationResult:
        return await self._mutate(
            "Deleting draft",
            lambda: self.store.delete_draft(draft_id),
            record_id=draft_id,
            after=lambda: self._cancel_autosave_for(draft_id),
        )

    async def promote_draft(self, draft_id: str, quiz: Quiz) -> OperationResult:
        """Finish a draft: write the quiz and drop the draft together."""

        def after() -> None:
            self._tombstones.pop(draft_id, None)
            # later edits go to the finished quiz, not a new draft
            self._cancel_autosave_for(draft_id)

        return await self._mutate(
            "Finishing quiz",
            lambda: self.lifecycle.promote(draft_id, quiz),
            record_id=quiz.id,
            after=after,
        )

    async def recover_latest_draft(self) -> Optional[Draft]:
        async def action() -> BackendResult:
            return BackendResult(value=await self.lifecycle.recover_latest_draft())

        result = await self._read("Recovering draft", action)
        return result.value if result is not None else None

    async def cleanup_aged_drafts(self, max_age_days: Optional[float] = None) -> int:
        """Delete drafts older than max_age_days; 0 (plus a notice) on failure."""
        days = self.settings.draft_max_age_days if max_age_days is None else max_age_days
        removed = 0

        async def action() -> BackendResult:
            nonlocal removed
            removed = await self.lifecycle.cleanup_aged(days)
            return BackendResult(value=removed)

        result = await self._mutate("Cleaning up drafts", action)
        return removed if result.success else 0

    # ---- usage / maintenance ------------------------------------------------

    async def get_usage(self, fresh: bool = False) -> UsageSnapshot:
        async def action() -> BackendResult:
            snapshot = await self.usage_monitor.get_usage(fresh=fresh)
            return BackendResult(value=snapshot, used_fallback=self.usage_monitor.used_fallback)

        result = await self._read("Reading usage", action)
        if result is not None:
            self.usage = result.value
            self._check_near_limit()
        return self.usage

    async def clear_all_storage(self) -> OperationResult:
        self.disable_autosave()

        def after() -> None:
            self._tombstones.clear()

        return await self._mutate("Clearing storage", self.store.clear_all, after=after)

    async def get_debug_info(self) -> Dict[str, Any]:
        async def action() -> BackendResult:
            return BackendResult(value=await self.store.read_metadata())

        meta = await self._read("Reading metadata", action)
        return {
            "instance_id": self.instance_id,
            "initialized": self.initialized,
            "primary_active": self.adapter.primary_active,
            "active_backend": self.adapter.active_backend,
            "migrated_records": self.adapter.migrated,
            "sync_status": self.sync_status,
            "documents": len(self.documents),
            "drafts": len(self.drafts),
            "usage": self.usage.model_dump(),
            "autosave": self.autosave_state,
            "tombstones": sorted(self._tombstones.keys()),
            "notices": len(self.notices),
            "metadata": meta.value if meta is not None else None,
        }

    # ---- reads --------------------------------------------------------------

    async def _read(self, label: str, action: Callable[[], Awaitable[BackendResult]]) -> Optional[BackendResult]:
        async def op() -> Optional[BackendResult]:
            try:
                result = await action()
            except StorageError as e:
                logger.warning("%s failed: %s", label, e)
                self._add_notice("error", e.message)
                return None
            except Exception:
                logger.exception("%s failed", label)
                self._add_notice("error", f"{label} failed unexpectedly")
                return None
            self._note_fallback(result.used_fallback)
            return result

        return await self._serialized(op)

    async def _reload(self, label: str) -> bool:
        async def op() -> bool:
            try:
                used_fallback = await self._refresh()
            except StorageError as e:
                logger.warning("%s failed: %s", label, e)
                self._set_sync_status("error")
                self._add_notice("error", e.message)
                return False
            except Exception:
                logger.exception("%s failed", label)
                self._set_sync_status("error")
                self._add_notice("error", f"{label} failed unexpectedly")
                return False
            self._note_fallback(used_fallback)
            return True

        return await self._serialized(op)

    # ---- auto-save ----------------------------------------------------------

    def enable_autosave(self, draft: Draft) -> AutoSaveState:
        """
        Start (or feed) the auto-save session for `draft`.

        Raises:
            RecordDeleted: the id was deleted moments ago; no session is started
        """
        if draft.id in self._tombstones:
            self._cancel_autosave_for(draft.id)
            self._add_notice("warning", f"Quiz {draft.id} was deleted; auto-save was not started.")
            raise RecordDeleted(draft.id)
        current = self.autosave
        if current is None or current.state.closed or current.state.draft_id != draft.id:
            if current is not None:
                current.cancel()
            current = self.autosave = AutoSaveScheduler.from_settings(
                self.save_draft,
                self.settings,
                on_give_up=self._on_autosave_give_up,
            )
        current.schedule(draft)
        return current.state

    def disable_autosave(self) -> None:
        if self.autosave is not None:
            self.autosave.cancel()
            self.autosave = None

    async def autosave_now(self) -> bool:
        if self.autosave is None:
            return False
        return await self.autosave.save_now()

    @property
    def autosave_state(self) -> Optional[Dict[str, Any]]:
        return self.autosave.state.as_dict() if self.autosave is not None else None

    def _on_autosave_give_up(self, state: AutoSaveState) -> None:
        self._add_notice(
            "error",
            f"Auto-save stopped after repeated failures ({state.last_error}). Save manually to continue.",
        )

    def _cancel_autosave_for(self, record_id: str) -> None:
        if self.autosave is not None and self.autosave.state.draft_id == record_id:
            logger.info("Closing auto-save session for deleted quiz %s", record_id)
            self.disable_autosave()

    # ---- cross-window -------------------------------------------------------

    def _on_channel_event(self, event: ChannelEvent) -> Optional[Awaitable[bool]]:
        if event.type != RECORD_DELETED:
            return None
        self._tombstones[event.id] = True
        if self.autosave is not None and self.autosave.state.draft_id == event.id:
            self._add_notice("warning", "This quiz was deleted in another window; editing was closed.")
        self._cancel_autosave_for(event.id)
        return self._reload("Reloading after remote delete")
