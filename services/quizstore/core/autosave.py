"""
Debounced, retrying auto-save for one editing session.

    idle -> saving -> saved -> idle
              |
              +-> error -> saving (retry)
                        -> idle   (give up, gave_up/last_error kept)

A save refused because the quiz was deleted ends the session at once.

All mutable session state lives in an AutoSaveState owned by the
scheduler; tearing the session down is `cancel()`.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Literal, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..models import Draft, OperationResult, utc_now
from .errors import AutoSaveFailed, RecordDeleted, StorageError

logger = logging.getLogger(__name__)

AutoSaveStatus = Literal["idle", "saving", "saved", "error"]
Saver = Callable[[Draft], Awaitable[OperationResult]]


@dataclass
class AutoSaveState:
    status: AutoSaveStatus = "idle"
    retry_count: int = 0
    timer: Optional[asyncio.TimerHandle] = None
    draft: Optional[Draft] = None
    # bumped by every schedule(); saved_revision is the newest one persisted
    revision: int = 0
    saved_revision: int = 0
    attempts: int = 0
    gave_up: bool = False
    last_error: Optional[str] = None
    last_saved: Optional[datetime] = None
    closed: bool = False

    @property
    def draft_id(self) -> Optional[str]:
        return self.draft.id if self.draft is not None else None

    @property
    def dirty(self) -> bool:
        return self.revision > self.saved_revision

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "draft_id": self.draft_id,
            "retry_count": self.retry_count,
            "pending": self.timer is not None,
            "dirty": self.dirty,
            "gave_up": self.gave_up,
            "last_error": self.last_error,
            "last_saved": self.last_saved,
            "closed": self.closed,
        }


class AutoSaveScheduler:
    """
    Coalesces rapid edits into one save of the latest draft.

    `saver` is normally QuizStorageService.save_draft; an unsuccessful
    OperationResult counts as a failed attempt.
    """

    def __init__(
        self,
        saver: Saver,
        *,
        debounce: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        saved_display: float = 2.0,
        error_display: float = 5.0,
        state: Optional[AutoSaveState] = None,
        on_status: Optional[Callable[[AutoSaveState], None]] = None,
        on_give_up: Optional[Callable[[AutoSaveState], None]] = None,
    ):
        self._saver = saver
        self.debounce = debounce
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.saved_display = saved_display
        self.error_display = error_display
        self.state = state or AutoSaveState()
        self.on_status = on_status
        self.on_give_up = on_give_up
        self._task: Optional[asyncio.Task] = None
        self._reset_handle: Optional[asyncio.TimerHandle] = None

    @classmethod
    def from_settings(cls, saver: Saver, settings, **kwargs: Any) -> "AutoSaveScheduler":
        return cls(
            saver,
            debounce=settings.autosave_debounce_seconds,
            max_retries=settings.autosave_max_retries,
            retry_delay=settings.autosave_retry_delay_seconds,
            saved_display=settings.autosave_saved_display_seconds,
            error_display=settings.autosave_error_display_seconds,
            **kwargs,
        )

    # ---- public -------------------------------------------------------------

    def schedule(self, draft: Draft) -> None:
        """Record the latest content and (re)start the debounce timer."""
        st = self.state
        if st.closed:
            logger.debug("Auto-save session closed; ignoring draft %s", draft.id)
            return
        st.draft = draft
        st.revision += 1
        if self.running:
            # the running cycle re-arms when it sees the newer revision
            return
        if st.gave_up:
            return
        self._arm()

    async def save_now(self) -> bool:
        """Manual save of the latest draft. Success clears a previous give-up."""
        st = self.state
        if st.closed or st.draft is None:
            return False
        self._cancel_timer()
        if self.running:
            await asyncio.gather(asyncio.shield(self._task), return_exceptions=True)
            if st.closed:
                return False
        self._task = asyncio.ensure_future(self._manual_cycle())
        return await asyncio.shield(self._task)

    def cancel(self) -> None:
        """End the session: drop the timer and retry state, never fire again."""
        st = self.state
        st.closed = True
        self._cancel_timer()
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            # the backend write itself is shielded and runs to completion
            self._task.cancel()
        st.retry_count = 0
        st.status = "idle"
        logger.debug("Auto-save session for %s cancelled", st.draft_id)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_idle(self) -> None:
        """Wait for a save cycle that is already running (tests, shutdown)."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # ---- timer --------------------------------------------------------------

    def _arm(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self.state.timer = loop.call_later(self.debounce, self._fire)

    def _cancel_timer(self) -> None:
        if self.state.timer is not None:
            self.state.timer.cancel()
            self.state.timer = None

    def _fire(self) -> None:
        self.state.timer = None
        if self.state.closed or self.running:
            return
        self._task = asyncio.ensure_future(self._auto_cycle())

    # ---- cycles -------------------------------------------------------------

    async def _attempt(self) -> int:
        st = self.state
        draft, revision = st.draft, st.revision
        self._set_status("saving")
        st.attempts += 1
        try:
            result = await asyncio.shield(self._saver(draft))
        except RecordDeleted:
            raise
        except StorageError as e:
            raise AutoSaveFailed(str(e)) from e
        if not result.success:
            if result.error_code == RecordDeleted.code:
                raise RecordDeleted(draft.id)
            raise AutoSaveFailed(result.error or "Draft could not be saved")
        return revision

    def _before_retry(self, retry_state: RetryCallState) -> None:
        st = self.state
        st.retry_count = retry_state.attempt_number
        st.last_error = str(retry_state.outcome.exception())
        self._set_status("error")
        logger.warning(
            "Auto-save of %s failed (%s); retry %d/%d in %.1fs",
            st.draft_id, st.last_error, st.retry_count, self.max_retries, self.retry_delay,
        )

    async def _auto_cycle(self) -> bool:
        if self.state.draft is None:
            return True
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_fixed(self.retry_delay),
                retry=retry_if_exception_type(AutoSaveFailed),
                before_sleep=self._before_retry,
                reraise=True,
            ):
                with attempt:
                    revision = await self._attempt()
        except RecordDeleted as e:
            self._close_deleted(e)
            return False
        except AutoSaveFailed as e:
            self._give_up(e)
            return False
        self._mark_saved(revision)
        return True

    async def _manual_cycle(self) -> bool:
        st = self.state
        try:
            revision = await self._attempt()
        except RecordDeleted as e:
            self._close_deleted(e)
            return False
        except AutoSaveFailed as e:
            st.last_error = str(e)
            self._set_status("error")
            self._reset_later(self.error_display)
            logger.warning("Manual save of %s failed: %s", st.draft_id, e)
            return False
        st.gave_up = False
        self._mark_saved(revision)
        return True

    def _mark_saved(self, revision: int) -> None:
        st = self.state
        st.saved_revision = max(st.saved_revision, revision)
        st.retry_count = 0
        st.last_error = None
        st.last_saved = utc_now()
        self._set_status("saved")
        self._reset_later(self.saved_display)
        if st.dirty and not st.closed and not st.gave_up:
            self._arm()

    def _give_up(self, error: Exception) -> None:
        st = self.state
        st.gave_up = True
        st.retry_count = self.max_retries
        st.last_error = str(error)
        self._set_status("error")
        logger.error("❌ Auto-save of %s gave up after %d retries: %s", st.draft_id, self.max_retries, error)
        if self.on_give_up is not None:
            try:
                self.on_give_up(st)
            except Exception:
                logger.exception("on_give_up callback failed")
        self._reset_later(self.error_display)

    def _close_deleted(self, error: RecordDeleted) -> None:
        self.state.last_error = str(error)
        logger.info("Auto-save of %s stopped: %s", self.state.draft_id, error)
        self.cancel()

    # ---- status -------------------------------------------------------------

    def _set_status(self, status: AutoSaveStatus) -> None:
        st = self.state
        if st.closed:
            return
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
        st.status = status
        if self.on_status is not None:
            try:
                self.on_status(st)
            except Exception:
                logger.exception("on_status callback failed")

    def _reset_later(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(delay, self._back_to_idle)

    def _back_to_idle(self) -> None:
        self._reset_handle = None
        if self.state.status in ("saved", "error") and not self.running:
            self._set_status("idle")
