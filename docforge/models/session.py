import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkflowStage(str, Enum):
    """
    analyzing -> generating -> validating -> {generating | completed | failed}
    """

    ANALYZING = "analyzing"
    GENERATING = "generating"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStage.COMPLETED, WorkflowStage.FAILED)


# Linear order used to mark earlier stages as completed.
STAGE_ORDER: List[WorkflowStage] = [
    WorkflowStage.ANALYZING,
    WorkflowStage.GENERATING,
    WorkflowStage.VALIDATING,
    WorkflowStage.COMPLETED,
]


class UserRequest(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    raw_input: str = Field(..., description="Natural-language request text")
    session_id: Optional[str] = Field(default=None)
    timestamp: float = Field(default_factory=time.time)
    context: Dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: float = Field(default_factory=time.time)


class ErrorRecord(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    stage: WorkflowStage
    message: str
    error_type: Optional[str] = None


class StateSnapshot(BaseModel):
    """
    Immutable capture of a session transition.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: float
    stage: WorkflowStage
    data: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowState(BaseModel):
    stage: WorkflowStage = WorkflowStage.ANALYZING
    progress: int = Field(default=0, ge=0, le=100)
    completed: List[WorkflowStage] = Field(default_factory=list)
    errors: List[ErrorRecord] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UserPreferences(BaseModel):
    default_model: Optional[str] = None
    output_format: str = "markdown"
    complexity_preference: str = "medium"
    iteration_limit: int = Field(default=10, ge=1)


class SessionContext(BaseModel):
    previous_requests: List[UserRequest] = Field(default_factory=list)
    iteration_count: int = Field(default=0, ge=0)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    user_preferences: UserPreferences = Field(default_factory=UserPreferences)


class Session(BaseModel):
    """
    One user's iterative generation interaction and its audit trail.
    """

    id: str = Field(..., description="Session id")
    user_id: Optional[str] = Field(default=None)
    current_request: UserRequest
    current_document: Optional[Any] = Field(
        default=None, description="Latest document produced for this session"
    )
    workflow_state: WorkflowState = Field(default_factory=WorkflowState)
    context: SessionContext = Field(default_factory=SessionContext)
    history: List[StateSnapshot] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class SessionData(BaseModel):
    """
    Portable export of a session, suitable for archiving or re-import.
    """

    session_id: str
    user_id: Optional[str] = None
    requests: List[UserRequest] = Field(default_factory=list)
    document: Optional[Any] = None
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    workflow_state: WorkflowState = Field(default_factory=WorkflowState)
    created_at: float
    completed_at: Optional[float] = None


class SessionSummary(BaseModel):
    stage: WorkflowStage
    progress: int
    request_count: int
    duration_seconds: float
    has_document: bool
    error_count: int


__all__ = [
    "ConversationMessage",
    "ErrorRecord",
    "STAGE_ORDER",
    "Session",
    "SessionContext",
    "SessionData",
    "SessionSummary",
    "StateSnapshot",
    "UserPreferences",
    "UserRequest",
    "WorkflowStage",
    "WorkflowState",
]
