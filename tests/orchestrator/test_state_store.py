import asyncio

import pytest

from docforge.errors import ConfigurationError, NotFound
from docforge.models import UserRequest, WorkflowStage
from docforge.orchestrator.state_store import (
    BlobSessionBackend,
    InMemorySessionBackend,
    SessionBackend,
    SessionStateStore,
)
from docforge.storage.blob_store import InMemoryBlobStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStateStore(session_timeout=3600, clock=clock)


@pytest.mark.asyncio
async def test_initialize_session_records_request(store):
    session = await store.initialize_session("s1", "Build a todo app", user_id="u1")

    assert session.workflow_state.stage == WorkflowStage.ANALYZING
    assert session.workflow_state.progress == 0
    assert session.current_request.raw_input == "Build a todo app"
    assert session.current_request.session_id == "s1"
    assert len(session.history) == 1
    assert session.history[0].data["raw_input"] == "Build a todo app"
    assert await store.active_session_count() == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("progress, expected", [(-20, 0), (45.6, 46), (150, 100)])
async def test_progress_is_clamped(store, progress, expected):
    await store.initialize_session("s1", "request")
    session = await store.update_workflow_stage("s1", WorkflowStage.GENERATING, progress)
    assert session.workflow_state.progress == expected


@pytest.mark.asyncio
async def test_stage_update_appends_snapshot_and_marks_earlier_stages(store):
    await store.initialize_session("s1", "request")

    session = await store.update_workflow_stage(
        "s1", WorkflowStage.VALIDATING, 60, metadata={"iteration": 1}
    )

    assert len(session.history) == 2
    snapshot = session.history[-1]
    assert snapshot.stage == WorkflowStage.VALIDATING
    assert snapshot.data == {"progress": 60, "metadata": {"iteration": 1}}
    assert snapshot.metadata == {"iteration": 1}
    assert session.workflow_state.completed == [WorkflowStage.ANALYZING, WorkflowStage.GENERATING]

    session = await store.update_workflow_stage("s1", WorkflowStage.GENERATING, metadata={"retry": True})
    assert session.workflow_state.metadata == {"iteration": 1, "retry": True}
    assert session.workflow_state.progress == 60


@pytest.mark.asyncio
async def test_snapshot_ids_are_unique(store):
    await store.initialize_session("s1", "request")
    for _ in range(5):
        await store.update_workflow_stage("s1", WorkflowStage.GENERATING)
    ids = [snap.id for snap in await store.get_session_history("s1")]
    assert len(ids) == len(set(ids)) == 6
    assert all(snap_id.startswith("s1-") for snap_id in ids)


@pytest.mark.asyncio
async def test_unknown_session_raises_not_found(store):
    with pytest.raises(NotFound):
        await store.update_workflow_stage("missing", WorkflowStage.GENERATING)
    with pytest.raises(NotFound):
        await store.add_conversation_message("missing", "user", "hi")
    assert await store.get_session("missing") is None
    assert await store.get_session_history("missing") == []
    assert await store.get_session_summary("missing") is None
    assert await store.restore_snapshot("missing", "x") is False


@pytest.mark.asyncio
async def test_add_request_to_context_increments_iteration(store):
    await store.initialize_session("s1", "first")
    await store.add_request_to_context("s1", "second")
    session = await store.add_request_to_context("s1", UserRequest(raw_input="third"))

    assert session.context.iteration_count == 2
    assert [r.raw_input for r in session.context.previous_requests] == ["second", "third"]
    assert session.current_request.raw_input == "third"
    assert session.current_request.session_id == "s1"


@pytest.mark.asyncio
async def test_conversation_history_is_trimmed_to_newest_messages(store):
    await store.initialize_session("s1", "request")
    for i in range(101):
        session = await store.add_conversation_message("s1", "user", f"message {i}")

    history = session.context.conversation_history
    assert len(history) == 50
    assert [m.content for m in history] == [f"message {i}" for i in range(51, 101)]


@pytest.mark.asyncio
async def test_reads_return_independent_copies(store):
    await store.initialize_session("s1", "request")

    first = await store.get_session("s1")
    first.workflow_state.progress = 99
    first.context.iteration_count = 42
    second = await store.get_session("s1")

    assert second.workflow_state.progress == 0
    assert second.context.iteration_count == 0
    assert first.model_dump() != second.model_dump()


@pytest.mark.asyncio
async def test_update_session_preserves_identity(store, clock):
    created = await store.initialize_session("s1", "request", user_id="u1")
    clock.advance(10)

    updated = await store.update_session("s1", {"id": "hijack", "created_at": 0, "user_id": "u2"})

    assert updated.id == "s1"
    assert updated.created_at == created.created_at
    assert updated.user_id == "u2"
    assert updated.updated_at == created.created_at + 10


@pytest.mark.asyncio
async def test_update_session_rejects_unknown_or_invalid_fields(store):
    await store.initialize_session("s1", "request")
    with pytest.raises(ConfigurationError):
        await store.update_session("s1", {"not_a_field": 1})
    with pytest.raises(ConfigurationError):
        await store.update_session("s1", {"workflow_state": {"progress": 500}})


@pytest.mark.asyncio
async def test_update_session_guards_store_managed_fields(store):
    await store.initialize_session("s1", "request")
    await store.add_request_to_context("s1", "first follow-up")
    before = await store.get_session("s1")
    assert before.history

    with pytest.raises(ConfigurationError):
        await store.update_session("s1", {"history": []})

    tampered = before.context.model_dump()
    tampered["iteration_count"] = 0
    with pytest.raises(ConfigurationError):
        await store.update_session("s1", {"context": tampered})

    tampered = before.context.model_dump()
    tampered["previous_requests"] = []
    with pytest.raises(ConfigurationError):
        await store.update_session("s1", {"context": tampered})

    after = await store.get_session("s1")
    assert len(after.history) == len(before.history)
    assert after.context.iteration_count == before.context.iteration_count


@pytest.mark.asyncio
async def test_update_session_trims_oversized_conversation(store):
    await store.initialize_session("s1", "request")
    session = await store.get_session("s1")
    context = session.context.model_dump()
    context["conversation_history"] = [
        {"role": "user", "content": f"m{i}", "timestamp": float(i)} for i in range(120)
    ]

    updated = await store.update_session("s1", {"context": context})

    contents = [m.content for m in updated.context.conversation_history]
    assert contents == [f"m{i}" for i in range(70, 120)]


@pytest.mark.asyncio
async def test_restore_snapshot_rolls_back_stage_and_progress(store):
    await store.initialize_session("s1", "request")
    session = await store.update_workflow_stage("s1", WorkflowStage.GENERATING, 30, {"iteration": 1})
    target = session.history[-1].id
    await store.update_workflow_stage("s1", WorkflowStage.FAILED, 90, {"error": "boom"})

    assert await store.restore_snapshot("s1", target) is True
    restored = await store.get_session("s1")

    assert restored.workflow_state.stage == WorkflowStage.GENERATING
    assert restored.workflow_state.progress == 30
    assert restored.workflow_state.metadata == {"iteration": 1}
    assert len(restored.history) == 3
    assert await store.restore_snapshot("s1", "unknown-snapshot") is False


@pytest.mark.asyncio
async def test_set_document_and_add_error(store):
    await store.initialize_session("s1", "request")
    await store.update_workflow_stage("s1", WorkflowStage.GENERATING)

    await store.set_document("s1", {"metadata": {"title": "Doc"}})
    session = await store.add_error("s1", ConfigurationError("bad limits"))

    assert session.current_document == {"metadata": {"title": "Doc"}}
    assert session.history[-1].data == {"metadata": {"title": "Doc"}}
    assert session.history[-1].stage == WorkflowStage.GENERATING
    error = session.workflow_state.errors[0]
    assert error.message == "bad limits"
    assert error.error_type == "configuration_error"
    assert error.stage == WorkflowStage.GENERATING


@pytest.mark.asyncio
async def test_session_summary(store, clock):
    await store.initialize_session("s1", "request")
    await store.add_request_to_context("s1", "more detail")
    await store.set_document("s1", {"metadata": {}})
    await store.add_error("s1", "transient")
    clock.advance(120)

    summary = await store.get_session_summary("s1")

    assert summary.request_count == 1
    assert summary.has_document is True
    assert summary.error_count == 1
    assert summary.duration_seconds == pytest.approx(120)


@pytest.mark.asyncio
async def test_export_and_import_round_trip(store, clock):
    await store.initialize_session("s1", "first", user_id="u1")
    await store.add_request_to_context("s1", "second")
    await store.add_conversation_message("s1", "assistant", "draft ready")
    await store.set_document("s1", {"metadata": {"title": "Doc"}})
    await store.update_workflow_stage("s1", WorkflowStage.COMPLETED, 100)

    exported = await store.export_session("s1")
    assert exported.completed_at == clock.now
    await store.delete_session("s1")

    other = SessionStateStore(clock=clock)
    assert await other.import_session(exported) == "s1"
    imported = await other.get_session("s1")

    assert imported.user_id == "u1"
    assert imported.current_request.raw_input == "second"
    assert imported.current_document == {"metadata": {"title": "Doc"}}
    assert imported.context.iteration_count == 1
    assert imported.workflow_state.stage == WorkflowStage.COMPLETED
    assert imported.history == []


@pytest.mark.asyncio
async def test_cleanup_removes_only_idle_sessions(store, clock):
    await store.initialize_session("old", "request")
    clock.advance(3000)
    await store.initialize_session("fresh", "request")
    clock.advance(1000)

    assert await store.cleanup_expired_sessions() == 1
    assert await store.get_session("old") is None
    assert await store.get_session("fresh") is not None
    assert await store.cleanup_expired_sessions(now=clock.now + 10_000) == 1
    assert await store.active_session_count() == 0


@pytest.mark.asyncio
async def test_blob_backend_persists_sessions(clock):
    blobs = InMemoryBlobStore()
    backend = BlobSessionBackend(blobs)
    store = SessionStateStore(backend, clock=clock)

    await store.initialize_session("s1", "request")
    await store.update_workflow_stage("s1", WorkflowStage.GENERATING, 25)

    assert await blobs.list("sessions/") == ["sessions/s1.json"]
    reopened = SessionStateStore(BlobSessionBackend(blobs), clock=clock)
    session = await reopened.get_session("s1")
    assert session.workflow_state.progress == 25
    assert await backend.list_ids() == ["s1"]
    assert await reopened.delete_session("s1") is True
    assert await blobs.list("sessions/") == []


def test_backends_satisfy_protocol():
    assert isinstance(InMemorySessionBackend(), SessionBackend)
    assert isinstance(BlobSessionBackend(InMemoryBlobStore()), SessionBackend)


@pytest.mark.asyncio
async def test_concurrent_writers_do_not_lose_updates(store):
    await store.initialize_session("s1", "request")

    await asyncio.gather(
        *(store.add_conversation_message("s1", "user", f"m{i}") for i in range(20)),
        *(store.add_request_to_context("s1", f"r{i}") for i in range(20)),
    )

    session = await store.get_session("s1")
    assert len(session.context.conversation_history) == 20
    assert session.context.iteration_count == 20
