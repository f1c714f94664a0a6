"""
Tests for the document store.

Run with: pytest services/quizstore/tests/test_document_store.py -v
"""
from datetime import timedelta

import pytest
from conftest import make_attachment, make_draft, make_quiz

from quizstore.adapters.sqlite import TABLES
from quizstore.core.capacity import estimate_size
from quizstore.core.document_store import DocumentStore
from quizstore.core.errors import AttachmentTooLarge, CapacityExceeded
from quizstore.core.usage import UsageMonitor


@pytest.fixture
def usage(adapter):
    return UsageMonitor(adapter, capacity=10 * 1024 * 1024, display_ttl=0)


@pytest.fixture
def store(adapter, usage, settings, clock):
    return DocumentStore(adapter, usage, settings.attachment_limits(), clock=clock)


async def all_ids(adapter, collection):
    return sorted((await adapter.record_sizes(collection)).value.keys())


class TestSaveDocument:
    async def test_saves_finished_record(self, store):
        result = await store.save_document(make_quiz(title="Geo Quiz"))
        assert result.used_fallback is False
        assert result.value.status == "finished"

        docs = (await store.load_documents()).value
        assert [(d.id, d.title, d.status) for d in docs] == [("q1", "Geo Quiz", "finished")]

    async def test_updated_at_strictly_increases(self, store, clock):
        first = (await store.save_document(make_quiz())).value
        # clock has not moved
        second = (await store.save_document(make_quiz())).value
        assert second.updated_at > first.updated_at
        assert first.updated_at == clock.now

    async def test_attachments_stored_separately(self, store, adapter):
        media = make_attachment(payload=b"picture bytes")
        await store.save_document(make_quiz(media=media))

        assert await all_ids(adapter, "attachments") == [media.id]
        raw = (await adapter.get("quizzes", "q1")).value
        assert "payload" not in raw["rounds"][0]["questions"][0]["media"]

        hydrated = (await store.load_document("q1")).value
        assert hydrated.attachments()[0].payload == b"picture bytes"
        bare = (await store.load_document("q1", hydrate=False)).value
        assert bare.attachments()[0].payload is None

    async def test_resave_with_unchanged_attachments(self, store, adapter):
        quiz = make_quiz(media=make_attachment())
        await store.save_document(quiz)
        await store.save_document(quiz)
        # saving the loaded (reference-only) copy keeps the stored media
        loaded = (await store.load_document("q1", hydrate=False)).value
        await store.save_document(loaded)
        assert len(await all_ids(adapter, "attachments")) == 1

    async def test_replaced_attachment_is_reclaimed(self, store, adapter):
        old = make_attachment(payload=b"old")
        await store.save_document(make_quiz(media=old))
        new = make_attachment(payload=b"new")
        await store.save_document(make_quiz(media=new))
        assert await all_ids(adapter, "attachments") == [new.id]

    async def test_removed_attachment_is_reclaimed(self, store, adapter):
        await store.save_document(make_quiz(media=make_attachment()))
        await store.save_document(make_quiz(media=None))
        assert await all_ids(adapter, "attachments") == []

    async def test_replacing_draft_removes_it(self, store):
        await store.save_draft(make_draft("q1"))
        await store.save_document(make_quiz("q1"), replacing_draft=True)
        assert (await store.load_draft("q1")).value is None
        assert (await store.load_document("q1")).value is not None

    async def test_load_missing_document(self, store):
        assert (await store.load_document("nope")).value is None


class TestCapacityGate:
    async def test_refuses_without_writing(self, store, usage, adapter):
        quiz = make_quiz(media=make_attachment(payload=b"x" * 2000))
        usage.capacity = estimate_size(quiz) // 2

        with pytest.raises(CapacityExceeded) as exc:
            await store.save_document(quiz)
        assert exc.value.required > usage.capacity
        for collection in ("quizzes", "drafts", "attachments"):
            assert await all_ids(adapter, collection) == []

    async def test_existing_usage_counts(self, store, usage, adapter):
        first = make_quiz("q1")
        saved = (await store.save_document(first)).value
        usage.capacity = estimate_size(saved) + estimate_size(make_quiz("q2")) // 2

        with pytest.raises(CapacityExceeded):
            await store.save_document(make_quiz("q2"))
        assert await all_ids(adapter, "quizzes") == ["q1"]

    async def test_exact_fit_is_allowed(self, store, usage, clock):
        quiz = make_quiz()
        stamped = quiz.model_copy(update={"updated_at": clock.now})
        usage.capacity = estimate_size(stamped)
        await store.save_document(quiz)
        snap = await usage.get_usage(fresh=True)
        assert snap.remaining_space == 0

    async def test_attachment_over_type_ceiling(self, adapter, usage, clock):
        store = DocumentStore(adapter, usage, {"image": 10, "audio": 10, "video": 10}, clock=clock)
        with pytest.raises(AttachmentTooLarge) as exc:
            await store.save_document(make_quiz(media=make_attachment(payload=b"x" * 11)))
        assert isinstance(exc.value, CapacityExceeded)
        assert await all_ids(adapter, "quizzes") == []

    async def test_drafts_bypass_the_gate(self, store, usage):
        usage.capacity = 1
        result = await store.save_draft(make_draft("d1"))
        assert result.value.id == "d1"
        snap = await usage.get_usage(fresh=True)
        assert snap.drafts_size > 0


class TestSizeAgreement:
    async def test_estimate_matches_reported_usage(self, store, usage):
        quiz = make_quiz(media=make_attachment(payload=b"\x00\x01" * 3000))
        saved = (await store.save_document(quiz)).value
        snap = await usage.get_usage(fresh=True)

        reported = snap.quizzes_size + snap.attachments_size
        assert reported == estimate_size(saved)
        # the pre-save estimate differs only by the re-stamped timestamp
        assert abs(reported - estimate_size(quiz)) <= 64

    async def test_draft_estimate_matches_usage(self, store, usage):
        saved = (await store.save_draft(make_draft("d1", description="Länder"))).value
        snap = await usage.get_usage(fresh=True)
        assert snap.drafts_size == estimate_size(saved)


class TestDeleteDocument:
    async def test_cascades_to_attachments(self, store, adapter):
        media = make_attachment()
        await store.save_document(make_quiz("q1", media=media))
        await store.save_document(make_quiz("q2", media=make_attachment(question_id="q2-r1-1")))

        await store.delete_document("q1")
        assert await all_ids(adapter, "quizzes") == ["q2"]
        assert media.id not in await all_ids(adapter, "attachments")
        assert len(await all_ids(adapter, "attachments")) == 1

    async def test_missing_id_is_noop(self, store, adapter):
        await store.save_document(make_quiz("q1"))
        await store.delete_document("nope")
        assert await all_ids(adapter, "quizzes") == ["q1"]

    async def test_with_draft_removes_both(self, store, adapter):
        await store.save_document(make_quiz("q1"))
        await store.save_draft(make_draft("q1"))
        await store.delete_document("q1", with_draft=True)
        assert await all_ids(adapter, "quizzes") == []
        assert await all_ids(adapter, "drafts") == []


class TestAttachmentOwnership:
    async def test_shared_id_gets_a_fresh_id(self, store, adapter):
        await store.save_document(make_quiz("qa", media=make_attachment("qa-r1-1", payload=b"a bytes", id="m1")))
        saved = await store.save_document(
            make_quiz("qb", media=make_attachment("qb-r1-1", payload=b"b bytes", id="m1"))
        )
        qb_media_id = saved.value.attachments()[0].id
        assert qb_media_id != "m1"

        await store.delete_document("qa")

        qb = (await store.load_document("qb")).value
        assert qb.attachments()[0].id == qb_media_id
        assert qb.attachments()[0].payload == b"b bytes"
        assert await all_ids(adapter, "attachments") == [qb_media_id]

    async def test_resaving_keeps_own_ids(self, store):
        quiz = make_quiz("qa", media=make_attachment("qa-r1-1", id="m1"))
        await store.save_document(quiz)
        saved = await store.save_document(quiz)
        assert saved.value.attachment_ids() == ["m1"]

    async def test_reference_to_another_quiz_is_rejected(self, store, adapter):
        await store.save_document(make_quiz("qa", media=make_attachment("qa-r1-1", id="m1")))

        with pytest.raises(ValueError):
            await store.save_document(make_quiz("qb", media=make_attachment("qb-r1-1", payload=None, id="m1")))
        assert await all_ids(adapter, "quizzes") == ["qa"]
        assert await all_ids(adapter, "attachments") == ["m1"]


class TestDrafts:
    async def test_last_saved_strictly_increases(self, store, clock):
        first = (await store.save_draft(make_draft("d1"))).value
        second = (await store.save_draft(make_draft("d1", title="edited"))).value
        assert first.last_saved == clock.now
        assert second.last_saved > first.last_saved
        assert second.is_draft is True and second.status == "draft"

    async def test_draft_keeps_media_inline(self, store, adapter):
        draft = make_draft("d1")
        quiz = make_quiz("d1", media=make_attachment(question_id="d1-r1-1", payload=b"inline"))
        draft.rounds = quiz.rounds
        await store.save_draft(draft)
        loaded = (await store.load_draft("d1")).value
        assert loaded.attachments()[0].payload == b"inline"
        assert await all_ids(adapter, "attachments") == []

    async def test_delete_draft(self, store):
        await store.save_draft(make_draft("d1"))
        await store.delete_draft("d1")
        await store.delete_draft("d1")
        assert (await store.load_drafts()).value == []

    async def test_list_drafts_before_is_strict(self, store, clock):
        start = clock.now
        await store.save_draft(make_draft("old"))
        clock.now = start + timedelta(days=1)
        await store.save_draft(make_draft("new"))

        assert [d.id for d in (await store.list_drafts_before(start + timedelta(days=1))).value] == ["old"]
        assert (await store.list_drafts_before(start)).value == []

    async def test_corrupt_draft_skipped(self, store, adapter):
        await store.save_draft(make_draft("good"))
        async with adapter.primary.inner.engine.begin() as conn:
            await conn.execute(TABLES["drafts"].insert().values(id="bad", indexed_at=0.0, data='{"id": "bad", "rounds": 5}'))

        result = await store.load_drafts()
        assert [d.id for d in result.value] == ["good"]
        assert "bad" in result.skipped


class TestMaintenance:
    async def test_metadata_is_not_counted(self, store, usage):
        meta = await store.write_metadata(last_cleanup=store.clock())
        assert meta["id"] == "app_metadata"
        assert (await store.read_metadata())["last_cleanup"] == store.clock().isoformat()
        assert (await usage.get_usage(fresh=True)).total_size == 0

    async def test_clear_all(self, store, adapter):
        await store.save_document(make_quiz("q1", media=make_attachment()))
        await store.save_draft(make_draft("d1"))
        await store.clear_all()
        for collection in ("quizzes", "drafts", "attachments", "metadata"):
            assert await all_ids(adapter, collection) == []
