from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Priority(str, Enum):
    """
    Priority tier of a candidate. Fallback routing tries MUST first.
    """

    MUST = "must"
    SHOULD = "should"
    NICE = "nice"

    @property
    def rank(self) -> int:
        return {"must": 3, "should": 2, "nice": 1}[self.value]


class TaskType(str, Enum):
    DOCUMENT_GENERATION = "document_generation"
    DOCUMENT_REFINEMENT = "document_refinement"
    FEATURE_ANALYSIS = "feature_analysis"
    TECH_STACK_SELECTION = "tech_stack_selection"
    ARCHITECTURE_DESIGN = "architecture_design"
    TESTING_STRATEGY = "testing_strategy"
    DOCUMENTATION = "documentation"


class FailureKind(str, Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    CAPABILITY = "capability"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    CONSTRAINT = "constraint"
    UNKNOWN = "unknown"


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"] = Field(..., description="Message author role")
    content: str = Field(..., description="Message text", min_length=1)
    name: Optional[str] = Field(None, description="Optional author name")


class ProviderConfig(BaseModel):
    """
    Static configuration for one generation backend. Immutable; the
    router derives its live candidate set from `enabled` on every call.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., description="Provider unique identifier (short slug)")
    model: str = Field(..., description="Model name sent to the backend")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(
        default=4096, description="Completion token budget per request", gt=0
    )
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    priority: Priority = Field(default=Priority.SHOULD, description="Fallback tier")
    enabled: bool = Field(default=True, description="Whether the router may pick it")
    credential_ref: Optional[str] = Field(
        default=None,
        description="Name of the secret holding the API key (never the key itself)",
    )
    cost_input: float = Field(
        default=0.0, description="Price per prompt token", ge=0.0
    )
    cost_output: float = Field(
        default=0.0, description="Price per completion token", ge=0.0
    )

    def generation_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.top_p is not None:
            options["top_p"] = self.top_p
        return options


class ProviderCapabilities(BaseModel):
    max_tokens: int = Field(default=4096, gt=0)
    supports_streaming: bool = False
    supports_system_messages: bool = True
    supports_function_calling: bool = False
    model_versions: List[str] = Field(default_factory=list)


class TokenUsage(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CandidateFailure(BaseModel):
    """
    Why one candidate could not serve a request.
    """

    provider_id: str
    kind: FailureKind
    reason: str
    status_code: Optional[int] = None
    attempts: int = Field(default=1, ge=0)


class BackendResponse(BaseModel):
    provider_id: str = Field(..., description="Provider that produced the content")
    model: str = Field(default="", description="Model reported by the backend")
    content: str = Field(..., description="Generated text")
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = Field(default=0.0, ge=0.0)
    finish_reason: str = Field(default="stop")
    latency_ms: Optional[float] = Field(default=None, ge=0.0)
    cache_hit: bool = Field(default=False)
    failed_attempts: List[CandidateFailure] = Field(
        default_factory=list,
        description="Candidates that failed before this response was obtained",
    )


__all__ = [
    "BackendResponse",
    "CandidateFailure",
    "ChatMessage",
    "FailureKind",
    "Priority",
    "ProviderCapabilities",
    "ProviderConfig",
    "TaskType",
    "TokenUsage",
]
