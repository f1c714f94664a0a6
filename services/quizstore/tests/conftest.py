"""
Shared fixtures: throwaway storage under tmp_path, fast timers, and an
adapter wrapper that injects backend failures on demand.
"""
from datetime import datetime, timezone

import pytest

from quizstore.adapters import FallbackAdapter, JsonAdapter, SqliteAdapter
from quizstore.core.errors import BackendUnavailable
from quizstore.core.events import BroadcastChannel
from quizstore.core.storage_service import QuizStorageService
from quizstore.models import Attachment, Draft, Question, Quiz, Round
from quizstore.settings import Settings

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FlakyAdapter:
    """
    Wraps a real adapter. Calls fail with `error_cls` while `fail_all` is
    set, or for the next `fail_next(n)` calls (of one op when `op` is given).
    """

    def __init__(self, inner, *, fail_all=False, fail_init=False, error_cls=BackendUnavailable):
        self.inner = inner
        self.name = f"flaky-{inner.name}"
        self.fail_all = fail_all
        self.fail_init = fail_init
        self.error_cls = error_cls
        self.pending_failures = 0
        self.failing_op = None
        self.calls = []

    def fail_next(self, n=1, op=None):
        self.pending_failures += n
        self.failing_op = op

    def _maybe_fail(self, op):
        self.calls.append(op)
        if self.fail_all:
            raise self.error_cls(f"injected failure in {op}")
        if self.pending_failures > 0 and self.failing_op in (None, op):
            self.pending_failures -= 1
            raise self.error_cls(f"injected failure in {op}")

    async def initialize(self):
        self.calls.append("initialize")
        if self.fail_init:
            raise BackendUnavailable("injected init failure")
        await self.inner.initialize()

    async def close(self):
        await self.inner.close()

    def __getattr__(self, op):
        target = getattr(self.inner, op)

        async def call(*args, **kwargs):
            self._maybe_fail(op)
            return await target(*args, **kwargs)

        return call


class Clock:
    """Settable clock for DocumentStore."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'quizstore.db'}",
        data_dir=str(tmp_path / "kv"),
        autosave_debounce_seconds=0.05,
        autosave_retry_delay_seconds=0.01,
        autosave_saved_display_seconds=0.05,
        autosave_error_display_seconds=0.05,
        sync_status_reset_seconds=0.05,
        usage_display_ttl_seconds=0,
        broadcast_channel=f"test-{tmp_path.name}",
    )


@pytest.fixture
async def sqlite_adapter(settings):
    adapter = SqliteAdapter.from_url(settings.db_url)
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest.fixture
async def json_adapter(settings):
    adapter = JsonAdapter(settings.data_dir, quota_bytes=settings.fallback_quota_bytes)
    await adapter.initialize()
    return adapter


def build_fallback(settings, **flaky_kwargs):
    primary = FlakyAdapter(SqliteAdapter.from_url(settings.db_url), **flaky_kwargs)
    fallback = JsonAdapter(settings.data_dir, quota_bytes=settings.fallback_quota_bytes)
    return FallbackAdapter(primary, fallback)


@pytest.fixture
async def adapter(settings):
    adapter = build_fallback(settings)
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest.fixture
def channel():
    return BroadcastChannel("test")


@pytest.fixture
async def service(settings, channel):
    svc = QuizStorageService(settings, channel=channel)
    await svc.initialize_storage()
    yield svc
    await svc.close()


@pytest.fixture
def clock():
    return Clock()


def make_attachment(question_id="q1-r1-1", payload=b"\x89PNG fake image bytes", **kwargs):
    return Attachment(
        owner_question_id=question_id,
        filename=kwargs.pop("filename", "picture.png"),
        mime_class=kwargs.pop("mime_class", "image"),
        mime_type=kwargs.pop("mime_type", "image/png"),
        payload=payload,
        **kwargs,
    )


def make_quiz(quiz_id="q1", title="Geo Quiz", media=None, questions=2):
    qs = [
        Question(
            id=f"{quiz_id}-r1-{i}",
            question=f"Question {i}?",
            possible_answers=["A", "B", "C", "D"],
            correct_answers=[i % 4],
        )
        for i in range(1, questions + 1)
    ]
    if media is not None:
        qs[0].media = media
    return Quiz(id=quiz_id, title=title, rounds=[Round(name="Round 1", questions=qs)])


def make_draft(draft_id="q1", title="Geo Quiz", **kwargs):
    return Draft(id=draft_id, title=title, **kwargs)

