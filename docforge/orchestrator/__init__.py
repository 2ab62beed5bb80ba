from .collaborators import Analyzer, Generator, LLMCall, LLMDocumentGenerator, StaticAnalyzer
from .iteration import (
    IterationController,
    IterationLimits,
    IterationMetrics,
    IterationOutcome,
    IterationRecord,
)
from .state_store import BlobSessionBackend, InMemorySessionBackend, SessionBackend, SessionStateStore

__all__ = [
    "Analyzer",
    "BlobSessionBackend",
    "Generator",
    "InMemorySessionBackend",
    "IterationController",
    "IterationLimits",
    "IterationMetrics",
    "IterationOutcome",
    "IterationRecord",
    "LLMCall",
    "LLMDocumentGenerator",
    "SessionBackend",
    "SessionStateStore",
    "StaticAnalyzer",
]
