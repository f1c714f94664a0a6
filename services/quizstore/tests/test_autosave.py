"""
Tests for the auto-save scheduler.

Run with: pytest services/quizstore/tests/test_autosave.py -v
"""
import asyncio

import pytest
from conftest import make_draft

from quizstore.core.autosave import AutoSaveScheduler, AutoSaveState
from quizstore.core.errors import BackendUnavailable, RecordDeleted
from quizstore.models import OperationResult

DEBOUNCE = 0.05


class FakeSaver:
    """Records every draft it is asked to save; fails the first `failures` calls."""

    def __init__(self, failures=0, block=None):
        self.failures = failures
        self.block = block
        self.saved = []
        self.finished = 0

    async def __call__(self, draft):
        self.saved.append(draft)
        if self.block is not None:
            await self.block.wait()
        self.finished += 1
        if self.failures:
            self.failures -= 1
            return OperationResult(success=False, error="disk on fire", error_code="backend_unavailable")
        return OperationResult(success=True, id=draft.id)


def make_scheduler(saver, **kwargs):
    statuses = []
    gave_up = []
    options = dict(
        debounce=DEBOUNCE,
        max_retries=3,
        retry_delay=0.01,
        saved_display=0.5,
        error_display=0.5,
        on_status=lambda st: statuses.append(st.status),
        on_give_up=lambda st: gave_up.append(st.last_error),
    )
    options.update(kwargs)
    scheduler = AutoSaveScheduler(saver, **options)
    return scheduler, statuses, gave_up


async def settle(scheduler, extra=0.0):
    """Let the debounce timer fire and the save cycle finish."""
    await asyncio.sleep(DEBOUNCE * 2 + extra)
    await scheduler.wait_idle()


class TestDebounce:
    async def test_rapid_calls_coalesce_into_one_save(self):
        saver = FakeSaver()
        scheduler, _, _ = make_scheduler(saver)
        for i in range(5):
            scheduler.schedule(make_draft(title=f"v{i}"))
        await settle(scheduler)

        assert [d.title for d in saver.saved] == ["v4"]
        assert scheduler.state.dirty is False

    async def test_each_call_restarts_the_timer(self):
        saver = FakeSaver()
        scheduler, _, _ = make_scheduler(saver, debounce=0.3)
        scheduler.schedule(make_draft(title="first"))
        await asyncio.sleep(0.2)
        scheduler.schedule(make_draft(title="second"))
        await asyncio.sleep(0.2)
        assert saver.saved == []

        await asyncio.sleep(0.25)
        await scheduler.wait_idle()
        assert [d.title for d in saver.saved] == ["second"]

    async def test_status_cycle(self):
        saver = FakeSaver()
        scheduler, statuses, _ = make_scheduler(saver, saved_display=0.2)
        scheduler.schedule(make_draft())
        await settle(scheduler)
        assert statuses == ["saving", "saved"]
        assert scheduler.state.last_saved is not None

        await asyncio.sleep(0.3)
        assert statuses == ["saving", "saved", "idle"]

    async def test_newer_content_during_save_is_saved_next(self):
        gate = asyncio.Event()
        saver = FakeSaver(block=gate)
        scheduler, _, _ = make_scheduler(saver)
        scheduler.schedule(make_draft(title="v1"))
        await asyncio.sleep(DEBOUNCE * 2)
        assert scheduler.running

        scheduler.schedule(make_draft(title="v2"))
        gate.set()
        await scheduler.wait_idle()
        await settle(scheduler)
        assert [d.title for d in saver.saved] == ["v1", "v2"]


class TestRetries:
    async def test_recovers_before_the_ceiling(self):
        saver = FakeSaver(failures=2)
        scheduler, statuses, gave_up = make_scheduler(saver)
        scheduler.schedule(make_draft())
        await settle(scheduler)

        assert len(saver.saved) == 3
        assert statuses == ["saving", "error", "saving", "error", "saving", "saved"]
        assert scheduler.state.retry_count == 0
        assert scheduler.state.gave_up is False
        assert gave_up == []

    async def test_gives_up_after_max_retries(self):
        saver = FakeSaver(failures=100)
        scheduler, statuses, gave_up = make_scheduler(saver, error_display=0.2)
        scheduler.schedule(make_draft())
        await settle(scheduler)

        # initial attempt plus three retries
        assert len(saver.saved) == 4
        st = scheduler.state
        assert st.gave_up is True
        assert st.retry_count == 3
        assert st.last_error == "disk on fire"
        assert gave_up == ["disk on fire"]
        assert statuses[-1] == "error"

        await asyncio.sleep(0.3)
        assert st.status == "idle"
        assert st.gave_up is True
        assert len(saver.saved) == 4

    async def test_no_automatic_saves_after_give_up(self):
        saver = FakeSaver(failures=100)
        scheduler, _, _ = make_scheduler(saver)
        scheduler.schedule(make_draft())
        await settle(scheduler)

        scheduler.schedule(make_draft(title="more edits"))
        await settle(scheduler)
        assert len(saver.saved) == 4
        assert scheduler.state.timer is None

    async def test_manual_save_resumes(self):
        saver = FakeSaver(failures=4)
        scheduler, _, _ = make_scheduler(saver)
        scheduler.schedule(make_draft())
        await settle(scheduler)
        assert scheduler.state.gave_up is True

        scheduler.schedule(make_draft(title="after"))
        assert await scheduler.save_now() is True
        assert saver.saved[-1].title == "after"
        assert scheduler.state.gave_up is False
        assert scheduler.state.last_error is None

    async def test_saver_exception_counts_as_failure(self):
        async def raising_saver(draft):
            raise BackendUnavailable("gone")

        scheduler, _, gave_up = make_scheduler(raising_saver, max_retries=1)
        scheduler.schedule(make_draft())
        await settle(scheduler)
        assert gave_up == ["gone"]


class TestDeletedRecord:
    async def test_deleted_record_is_not_retried(self):
        calls = []

        async def refusing_saver(draft):
            calls.append(draft.id)
            return OperationResult(success=False, error="deleted", error_code="record_deleted", id=draft.id)

        scheduler, _, gave_up = make_scheduler(refusing_saver)
        scheduler.schedule(make_draft("q1"))
        await settle(scheduler)

        assert calls == ["q1"]
        st = scheduler.state
        assert st.closed is True
        assert st.gave_up is False
        assert "q1" in st.last_error
        assert gave_up == []

        scheduler.schedule(make_draft("q1", title="more edits"))
        await settle(scheduler)
        assert calls == ["q1"]

    async def test_manual_save_of_deleted_record_closes_session(self):
        async def raising_saver(draft):
            raise RecordDeleted(draft.id)

        scheduler, _, gave_up = make_scheduler(raising_saver)
        scheduler.schedule(make_draft("q1"))
        assert await scheduler.save_now() is False
        assert scheduler.state.closed is True
        assert gave_up == []


class TestCancel:
    async def test_cancel_before_timer_fires(self):
        saver = FakeSaver()
        scheduler, _, _ = make_scheduler(saver)
        scheduler.schedule(make_draft())
        scheduler.cancel()
        await asyncio.sleep(DEBOUNCE * 3)

        assert saver.saved == []
        assert scheduler.state.closed is True
        assert scheduler.state.timer is None

    async def test_schedule_after_cancel_is_ignored(self):
        saver = FakeSaver()
        scheduler, _, _ = make_scheduler(saver)
        scheduler.cancel()
        scheduler.schedule(make_draft())
        await asyncio.sleep(DEBOUNCE * 3)
        assert saver.saved == []
        assert await scheduler.save_now() is False

    async def test_in_flight_write_completes_after_cancel(self):
        gate = asyncio.Event()
        saver = FakeSaver(block=gate)
        scheduler, _, _ = make_scheduler(saver)
        scheduler.schedule(make_draft(title="v1"))
        await asyncio.sleep(DEBOUNCE * 2)
        assert scheduler.running

        scheduler.schedule(make_draft(title="v2"))
        scheduler.cancel()
        gate.set()
        await asyncio.sleep(DEBOUNCE * 3)

        assert saver.finished == 1
        assert [d.title for d in saver.saved] == ["v1"]

    async def test_state_object_is_owned_by_the_session(self):
        state = AutoSaveState()
        scheduler, _, _ = make_scheduler(FakeSaver(), state=state)
        scheduler.schedule(make_draft("d9"))
        assert state.draft_id == "d9"
        assert state.as_dict()["pending"] is True
        scheduler.cancel()
        assert state.as_dict()["pending"] is False


@pytest.mark.parametrize("max_retries", [0, 1, 2])
async def test_attempts_are_initial_plus_retries(max_retries):
    saver = FakeSaver(failures=100)
    scheduler, _, gave_up = make_scheduler(saver, max_retries=max_retries)
    scheduler.schedule(make_draft())
    await settle(scheduler)
    assert len(saver.saved) == max_retries + 1
    assert len(gave_up) == 1
