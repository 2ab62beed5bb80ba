from .analysis import AnalysisResult, ComplexityLevel
from .cache import CacheEntry, CacheEntryMetadata, CacheStats
from .provider import (
    BackendResponse,
    CandidateFailure,
    ChatMessage,
    FailureKind,
    Priority,
    ProviderCapabilities,
    ProviderConfig,
    TaskType,
    TokenUsage,
)
from .routing import (
    CapabilityStrategy,
    CostStrategy,
    FallbackStrategy,
    PerformanceStrategy,
    RoundRobinStrategy,
    RoutingStrategy,
)
from .session import (
    STAGE_ORDER,
    ConversationMessage,
    ErrorRecord,
    Session,
    SessionContext,
    SessionData,
    SessionSummary,
    StateSnapshot,
    UserPreferences,
    UserRequest,
    WorkflowStage,
    WorkflowState,
)
from .validation import (
    QualityWeights,
    RuleCategory,
    Severity,
    ValidationConfig,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
    ValidationRule,
)

__all__ = [
    "AnalysisResult",
    "BackendResponse",
    "CacheEntry",
    "CacheEntryMetadata",
    "CacheStats",
    "CandidateFailure",
    "CapabilityStrategy",
    "ChatMessage",
    "ComplexityLevel",
    "ConversationMessage",
    "CostStrategy",
    "ErrorRecord",
    "FailureKind",
    "FallbackStrategy",
    "PerformanceStrategy",
    "Priority",
    "ProviderCapabilities",
    "ProviderConfig",
    "QualityWeights",
    "RoundRobinStrategy",
    "RoutingStrategy",
    "RuleCategory",
    "STAGE_ORDER",
    "Session",
    "SessionContext",
    "SessionData",
    "SessionSummary",
    "Severity",
    "StateSnapshot",
    "TaskType",
    "TokenUsage",
    "UserPreferences",
    "UserRequest",
    "ValidationConfig",
    "ValidationIssue",
    "ValidationReport",
    "ValidationResult",
    "ValidationRule",
    "WorkflowStage",
    "WorkflowState",
]
