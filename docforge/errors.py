"""
Error taxonomy for the orchestration engine.

Every error exposes `to_dict()` with the standard payload shape used by
callers that render errors:

    {
        "error": "all_providers_exhausted",
        "message": "Every candidate failed",
        "details": {...}
    }
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from docforge.models.provider import CandidateFailure, FailureKind


class DocforgeError(Exception):
    """Base class for all engine errors."""

    error_type = "docforge_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_type,
            "message": self.message,
            "details": self.details or None,
        }


class NotFound(DocforgeError):
    """Unknown session or provider."""

    error_type = "not_found"


class ConfigurationError(DocforgeError):
    """Invalid limits, weights or validation settings."""

    error_type = "configuration_error"


class ValidationFailure(DocforgeError):
    """
    Raised when the iteration budget is spent and the document is still
    invalid. Carries the last report and document so callers can inspect
    what was produced.
    """

    error_type = "validation_failure"

    def __init__(self, message: str, *, report: Any, document: Any) -> None:
        errors = getattr(getattr(report, "overall", None), "errors", []) or []
        super().__init__(message, details={"error_count": len(errors)})
        self.report = report
        self.document = document


class GenerationError(DocforgeError):
    """The generator could not turn a backend response into a document."""

    error_type = "generation_error"


class IterationTimeout(DocforgeError):
    """The loop (or a request) ran past its wall-clock budget."""

    error_type = "timeout"


class ProviderFailure(DocforgeError):
    """
    A single candidate failed. The router decides whether to retry the
    same candidate or advance to the next one based on `kind`.
    """

    error_type = "provider_failure"
    kind: FailureKind = FailureKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.provider_id = provider_id
        self.status_code = status_code

    def to_failure(self, provider_id: Optional[str] = None, attempts: int = 1) -> CandidateFailure:
        return CandidateFailure(
            provider_id=provider_id or self.provider_id or "unknown",
            kind=self.kind,
            reason=self.message,
            status_code=self.status_code,
            attempts=attempts,
        )


class ProviderRateLimited(ProviderFailure):
    kind = FailureKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = 429,
    ) -> None:
        super().__init__(message, provider_id=provider_id, status_code=status_code)
        self.retry_after = retry_after


class ProviderAuthError(ProviderFailure):
    kind = FailureKind.AUTHENTICATION


class ProviderNetworkError(ProviderFailure):
    kind = FailureKind.NETWORK


class ProviderUnavailable(ProviderFailure):
    kind = FailureKind.UNAVAILABLE


class CapabilityMismatch(ProviderFailure):
    kind = FailureKind.CAPABILITY


class ProviderTimeout(ProviderFailure):
    kind = FailureKind.TIMEOUT


class AllProvidersExhausted(DocforgeError):
    """Every candidate failed; `failures` keeps one entry per candidate."""

    error_type = "all_providers_exhausted"

    def __init__(self, failures: Sequence[CandidateFailure], *, task_type: Optional[str] = None) -> None:
        self.failures: List[CandidateFailure] = list(failures)
        summary = ", ".join(f"{f.provider_id}={f.kind.value}" for f in self.failures) or "no candidates"
        message = "All providers failed"
        if task_type:
            message = f"{message} for task '{task_type}'"
        super().__init__(
            f"{message}; {summary}",
            details={"failures": [f.model_dump(mode="json") for f in self.failures]},
        )


__all__ = [
    "AllProvidersExhausted",
    "CapabilityMismatch",
    "ConfigurationError",
    "DocforgeError",
    "GenerationError",
    "IterationTimeout",
    "NotFound",
    "ProviderAuthError",
    "ProviderFailure",
    "ProviderNetworkError",
    "ProviderRateLimited",
    "ProviderTimeout",
    "ProviderUnavailable",
    "ValidationFailure",
]
