"""
Map arbitrary backend errors onto the ProviderFailure taxonomy.

Rules:
- 401/403 are authentication failures; advance to the next candidate.
- 429 or rate-limit wording is retried on the same candidate with backoff.
- 400/422 whose message says a feature is unsupported is a capability
  mismatch; any other 4xx is an unknown request failure.
- 5xx, transport errors and connection resets are network failures.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import httpx

from docforge.errors import (
    CapabilityMismatch,
    ProviderAuthError,
    ProviderFailure,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderTimeout,
)

RATE_LIMIT_MARKERS = (
    "rate limit",
    "too many requests",
    "429",
    "quota exceeded",
)

_UNSUPPORTED_MARKERS = (
    "does not support",
    "not supported",
    "unsupported",
    "not enabled",
)


def _message_from_json(obj: Any) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    error = obj.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"].strip() or None
    if isinstance(error, str) and error.strip():
        return error.strip()
    for field in ("message", "detail"):
        value = obj.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_error_message(error_text: Optional[str]) -> str:
    """Pull the human-readable message out of a JSON error body when there is one."""
    if not error_text:
        return ""
    try:
        parsed = json.loads(error_text)
    except json.JSONDecodeError:
        return error_text
    return _message_from_json(parsed) or error_text


def is_rate_limit_message(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def is_capability_mismatch(status_code: Optional[int], error_text: Optional[str]) -> bool:
    if status_code not in (400, 422):
        return False
    lowered = extract_error_message(error_text).lower()
    return any(marker in lowered for marker in _UNSUPPORTED_MARKERS)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    # Only the delta-seconds form; HTTP dates are ignored.
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def failure_for_status(
    status_code: int,
    error_text: Optional[str] = None,
    *,
    provider_id: Optional[str] = None,
    retry_after: Optional[float] = None,
) -> ProviderFailure:
    message = extract_error_message(error_text) or f"HTTP {status_code}"
    if status_code in (401, 403):
        return ProviderAuthError(message, provider_id=provider_id, status_code=status_code)
    if status_code == 429 or is_rate_limit_message(message):
        return ProviderRateLimited(
            message, retry_after=retry_after, provider_id=provider_id, status_code=status_code
        )
    if is_capability_mismatch(status_code, error_text):
        return CapabilityMismatch(message, provider_id=provider_id, status_code=status_code)
    if status_code >= 500:
        return ProviderNetworkError(message, provider_id=provider_id, status_code=status_code)
    return ProviderFailure(message, provider_id=provider_id, status_code=status_code)


def classify_failure(exc: BaseException, provider_id: Optional[str] = None) -> ProviderFailure:
    """
    Normalise any exception raised by an adapter call.
    """
    if isinstance(exc, ProviderFailure):
        if exc.provider_id is None:
            exc.provider_id = provider_id
        return exc

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProviderTimeout(str(exc) or "Request timed out", provider_id=provider_id)

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return failure_for_status(
            response.status_code,
            response.text,
            provider_id=provider_id,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )

    if isinstance(exc, (httpx.HTTPError, ConnectionError)):
        return ProviderNetworkError(str(exc) or exc.__class__.__name__, provider_id=provider_id)

    message = str(exc) or exc.__class__.__name__
    if is_rate_limit_message(message):
        return ProviderRateLimited(message, provider_id=provider_id, status_code=None)
    return ProviderFailure(message, provider_id=provider_id)


__all__ = [
    "RATE_LIMIT_MARKERS",
    "classify_failure",
    "extract_error_message",
    "failure_for_status",
    "is_capability_mismatch",
    "is_rate_limit_message",
    "parse_retry_after",
]
