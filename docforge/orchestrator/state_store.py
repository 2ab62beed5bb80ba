"""
Session state tracking for iterative document generation.

`SessionStateStore` owns every mutation of a session. Sessions live in a
pluggable `SessionBackend`; each session id has its own asyncio lock so
concurrent writers on one session are serialised while different
sessions proceed independently.

Reads return copies: mutating a returned `Session` never changes the
stored one.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union, runtime_checkable

from pydantic import ValidationError

from docforge.errors import ConfigurationError, NotFound
from docforge.logging_config import logger
from docforge.models import (
    STAGE_ORDER,
    ConversationMessage,
    ErrorRecord,
    Session,
    SessionContext,
    SessionData,
    SessionSummary,
    StateSnapshot,
    UserRequest,
    WorkflowStage,
    WorkflowState,
)
from docforge.settings import settings
from docforge.storage.blob_store import BlobStore

MAX_CONVERSATION_MESSAGES = 100
TRIMMED_CONVERSATION_MESSAGES = 50
SESSIONS_DIR = "sessions"

RequestLike = Union[UserRequest, str]


@runtime_checkable
class SessionBackend(Protocol):
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    async def set(self, session: Session) -> None:
        ...

    async def delete(self, session_id: str) -> bool:
        ...

    async def list_ids(self) -> List[str]:
        ...


class InMemorySessionBackend:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    async def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def set(self, session: Session) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_ids(self) -> List[str]:
        return list(self._sessions)


class BlobSessionBackend:
    """
    Sessions stored as JSON documents under sessions/<id>.json.
    """

    def __init__(self, store: BlobStore) -> None:
        self._store = store

    @staticmethod
    def _path(session_id: str) -> str:
        return f"{SESSIONS_DIR}/{session_id}.json"

    async def get(self, session_id: str) -> Optional[Session]:
        payload = await self._store.read(self._path(session_id))
        if payload is None:
            return None
        return Session.model_validate(payload)

    async def set(self, session: Session) -> None:
        await self._store.write(self._path(session.id), session.model_dump(mode="json"))

    async def delete(self, session_id: str) -> bool:
        return await self._store.delete(self._path(session_id))

    async def list_ids(self) -> List[str]:
        prefix = f"{SESSIONS_DIR}/"
        return [
            path[len(prefix):-len(".json")]
            for path in await self._store.list(prefix)
            if path.endswith(".json")
        ]


def as_request(request: RequestLike, session_id: Optional[str] = None) -> UserRequest:
    if isinstance(request, UserRequest):
        if request.session_id is None and session_id is not None:
            return request.model_copy(update={"session_id": session_id})
        return request
    return UserRequest(raw_input=str(request), session_id=session_id)


def clamp_progress(value: float) -> int:
    return int(max(0, min(100, round(value))))


class SessionStateStore:
    def __init__(
        self,
        backend: Optional[SessionBackend] = None,
        *,
        session_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend: SessionBackend = backend if backend is not None else InMemorySessionBackend()
        self.session_timeout = (
            session_timeout if session_timeout is not None else settings.session_timeout_seconds
        )
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _snapshot(self, session: Session, stage: WorkflowStage, data: Any) -> StateSnapshot:
        now = self._clock()
        snapshot = StateSnapshot(
            id=f"{session.id}-{int(now * 1000)}-{uuid.uuid4().hex[:9]}",
            timestamp=now,
            stage=stage,
            data=data,
            metadata=dict(session.workflow_state.metadata),
        )
        session.history.append(snapshot)
        return snapshot

    async def _load(self, session_id: str) -> Session:
        session = await self._backend.get(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", details={"session_id": session_id})
        return session

    async def _mutate(self, session_id: str, change: Callable[[Session], None]) -> Session:
        async with self._get_lock(session_id):
            session = await self._load(session_id)
            change(session)
            session.updated_at = self._clock()
            await self._backend.set(session)
            return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize_session(
        self, session_id: str, request: RequestLike, user_id: Optional[str] = None
    ) -> Session:
        """
        Create (or overwrite) a session at the analyzing stage with one
        snapshot holding the initial request.
        """
        req = as_request(request, session_id)
        now = self._clock()
        session = Session(
            id=session_id,
            user_id=user_id,
            current_request=req,
            workflow_state=WorkflowState(stage=WorkflowStage.ANALYZING, progress=0),
            context=SessionContext(),
            created_at=now,
            updated_at=now,
        )
        self._snapshot(session, WorkflowStage.ANALYZING, req.model_dump(mode="json"))
        async with self._get_lock(session_id):
            await self._backend.set(session)
        logger.info("session %s initialized (user=%s)", session_id, user_id)
        return session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self._backend.get(session_id)

    async def delete_session(self, session_id: str) -> bool:
        async with self._get_lock(session_id):
            removed = await self._backend.delete(session_id)
        self._locks.pop(session_id, None)
        return removed

    async def active_session_count(self) -> int:
        return len(await self._backend.list_ids())

    async def cleanup_expired_sessions(self, now: Optional[float] = None) -> int:
        """
        Delete sessions idle for longer than the session timeout. This is
        the only path that evicts sessions besides `delete_session`.
        """
        current = self._clock() if now is None else now
        removed = 0
        for session_id in await self._backend.list_ids():
            async with self._get_lock(session_id):
                session = await self._backend.get(session_id)
                if session is None or current - session.updated_at <= self.session_timeout:
                    continue
                if await self._backend.delete(session_id):
                    removed += 1
            self._locks.pop(session_id, None)
        if removed:
            logger.info("session store: evicted %d expired sessions", removed)
        return removed

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_session(self, session_id: str, partial: Mapping[str, Any]) -> Session:
        """
        Shallow merge of `partial` over the stored session. `id` and
        `created_at` are ignored. `history` and the request bookkeeping in
        `context` change only through their dedicated operations, so an
        update that alters them is rejected; an oversized conversation is
        trimmed the same way `add_conversation_message` trims it.
        """
        unknown = [key for key in partial if key not in Session.model_fields]
        if unknown:
            raise ConfigurationError("Unknown session fields", details={"fields": unknown})
        if "history" in partial:
            raise ConfigurationError(
                "Session history is append-only", details={"fields": ["history"]}
            )

        async with self._get_lock(session_id):
            session = await self._load(session_id)
            data = session.model_dump()
            for key, value in partial.items():
                if key in ("id", "created_at"):
                    continue
                data[key] = value
            data["updated_at"] = self._clock()
            try:
                updated = Session.model_validate(data)
            except ValidationError as exc:
                raise ConfigurationError(
                    "Invalid session update", details={"errors": exc.errors(include_url=False)}
                ) from exc

            context = updated.context
            if (
                context.iteration_count != session.context.iteration_count
                or context.previous_requests != session.context.previous_requests
            ):
                raise ConfigurationError(
                    "previous_requests and iteration_count change only through add_request_to_context",
                    details={"fields": ["context"]},
                )
            if len(context.conversation_history) > MAX_CONVERSATION_MESSAGES:
                context.conversation_history = context.conversation_history[-TRIMMED_CONVERSATION_MESSAGES:]

            await self._backend.set(updated)
            return updated

    async def update_workflow_stage(
        self,
        session_id: str,
        stage: WorkflowStage,
        progress: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Session:
        stage = WorkflowStage(stage)

        def change(session: Session) -> None:
            state = session.workflow_state
            state.stage = stage
            if progress is not None:
                state.progress = clamp_progress(progress)
            if metadata:
                state.metadata = {**state.metadata, **metadata}
            if stage in STAGE_ORDER:
                for earlier in STAGE_ORDER[: STAGE_ORDER.index(stage)]:
                    if earlier not in state.completed:
                        state.completed.append(earlier)
            self._snapshot(session, stage, {"progress": state.progress, "metadata": dict(metadata or {})})

        return await self._mutate(session_id, change)

    async def add_request_to_context(self, session_id: str, request: RequestLike) -> Session:
        req = as_request(request, session_id)

        def change(session: Session) -> None:
            session.context.previous_requests.append(req)
            session.context.iteration_count += 1
            session.current_request = req

        return await self._mutate(session_id, change)

    async def add_conversation_message(self, session_id: str, role: str, content: str) -> Session:
        message = ConversationMessage(role=role, content=content, timestamp=self._clock())

        def change(session: Session) -> None:
            history = session.context.conversation_history
            history.append(message)
            if len(history) > MAX_CONVERSATION_MESSAGES:
                session.context.conversation_history = history[-TRIMMED_CONVERSATION_MESSAGES:]

        return await self._mutate(session_id, change)

    async def set_document(self, session_id: str, document: Any) -> Session:
        def change(session: Session) -> None:
            session.current_document = document
            self._snapshot(session, session.workflow_state.stage, document)

        return await self._mutate(session_id, change)

    async def add_error(self, session_id: str, error: Union[BaseException, str]) -> Session:
        def change(session: Session) -> None:
            session.workflow_state.errors.append(
                ErrorRecord(
                    timestamp=self._clock(),
                    stage=session.workflow_state.stage,
                    message=str(error),
                    error_type=getattr(error, "error_type", None) or type(error).__name__,
                )
            )

        return await self._mutate(session_id, change)

    async def restore_snapshot(self, session_id: str, snapshot_id: str) -> bool:
        """
        Roll the workflow stage, progress and metadata back to a snapshot.
        History itself is left untouched.
        """
        async with self._get_lock(session_id):
            session = await self._backend.get(session_id)
            if session is None:
                return False
            snapshot = next((s for s in session.history if s.id == snapshot_id), None)
            if snapshot is None:
                return False
            session.workflow_state.stage = snapshot.stage
            session.workflow_state.metadata = dict(snapshot.metadata)
            if isinstance(snapshot.data, dict) and "progress" in snapshot.data:
                session.workflow_state.progress = clamp_progress(snapshot.data["progress"])
            session.updated_at = self._clock()
            await self._backend.set(session)
        logger.info("session %s restored to snapshot %s", session_id, snapshot_id)
        return True

    # ------------------------------------------------------------------
    # Read-side helpers
    # ------------------------------------------------------------------

    async def get_session_history(self, session_id: str) -> List[StateSnapshot]:
        session = await self._backend.get(session_id)
        return list(session.history) if session is not None else []

    async def get_session_summary(self, session_id: str) -> Optional[SessionSummary]:
        session = await self._backend.get(session_id)
        if session is None:
            return None
        return SessionSummary(
            stage=session.workflow_state.stage,
            progress=session.workflow_state.progress,
            request_count=session.context.iteration_count,
            duration_seconds=max(0.0, self._clock() - session.created_at),
            has_document=session.current_document is not None,
            error_count=len(session.workflow_state.errors),
        )

    async def export_session(self, session_id: str) -> Optional[SessionData]:
        session = await self._backend.get(session_id)
        if session is None:
            return None
        completed = session.workflow_state.stage == WorkflowStage.COMPLETED
        return SessionData(
            session_id=session.id,
            user_id=session.user_id,
            requests=session.context.previous_requests,
            document=session.current_document,
            conversation_history=session.context.conversation_history,
            workflow_state=session.workflow_state,
            created_at=session.created_at,
            completed_at=session.updated_at if completed else None,
        )

    async def import_session(self, data: SessionData) -> str:
        session_id = data.session_id
        if data.requests:
            current = data.requests[-1]
        else:
            current = UserRequest(
                id="imported", raw_input="Imported session", session_id=session_id, timestamp=data.created_at
            )
        session = Session(
            id=session_id,
            user_id=data.user_id,
            current_request=current,
            current_document=data.document,
            workflow_state=data.workflow_state,
            context=SessionContext(
                previous_requests=list(data.requests),
                iteration_count=len(data.requests),
                conversation_history=list(data.conversation_history),
            ),
            history=[],
            created_at=data.created_at,
            updated_at=self._clock(),
        )
        async with self._get_lock(session_id):
            await self._backend.set(session)
        logger.info("session %s imported (%d requests)", session_id, len(data.requests))
        return session_id


__all__ = [
    "BlobSessionBackend",
    "InMemorySessionBackend",
    "MAX_CONVERSATION_MESSAGES",
    "SessionBackend",
    "SessionStateStore",
    "TRIMMED_CONVERSATION_MESSAGES",
    "as_request",
    "clamp_progress",
]
