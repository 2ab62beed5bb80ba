import asyncio

import httpx
import pytest

from docforge.errors import (
    CapabilityMismatch,
    ProviderAuthError,
    ProviderFailure,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderTimeout,
)
from docforge.models import FailureKind
from docforge.routing.error_classifier import (
    classify_failure,
    extract_error_message,
    failure_for_status,
    is_capability_mismatch,
    is_rate_limit_message,
    parse_retry_after,
)


def test_extract_error_message_from_openai_style_body():
    body = '{"error": {"message": "Invalid API key", "type": "auth"}}'
    assert extract_error_message(body) == "Invalid API key"


def test_extract_error_message_falls_back_to_raw_text():
    assert extract_error_message("upstream exploded") == "upstream exploded"
    assert extract_error_message('{"detail": "nope"}') == "nope"
    assert extract_error_message(None) == ""


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Rate limit reached for requests", True),
        ("Too Many Requests", True),
        ("You exceeded your current quota exceeded", True),
        ("model not found", False),
        (None, False),
    ],
)
def test_is_rate_limit_message(text, expected):
    assert is_rate_limit_message(text) is expected


def test_capability_mismatch_requires_client_error_status():
    body = '{"error": {"message": "function calling is not supported by this model"}}'
    assert is_capability_mismatch(400, body)
    assert not is_capability_mismatch(500, body)
    assert not is_capability_mismatch(400, '{"error": "missing field"}')


@pytest.mark.parametrize(
    "value, expected",
    [("12", 12.0), ("0.5", 0.5), ("-1", None), ("Wed, 21 Oct 2015 07:28:00 GMT", None), (None, None)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected


@pytest.mark.parametrize(
    "status, body, expected",
    [
        (401, "unauthorized", ProviderAuthError),
        (403, "forbidden", ProviderAuthError),
        (429, "slow down", ProviderRateLimited),
        (400, "rate limit exceeded", ProviderRateLimited),
        (422, '{"error": "streaming is unsupported"}', CapabilityMismatch),
        (502, "bad gateway", ProviderNetworkError),
        (404, "no such model", ProviderFailure),
    ],
)
def test_failure_for_status(status, body, expected):
    failure = failure_for_status(status, body, provider_id="p")
    assert type(failure) is expected
    assert failure.status_code == status
    assert failure.provider_id == "p"


def test_failure_for_status_keeps_retry_after():
    failure = failure_for_status(429, "", retry_after=3.0)
    assert isinstance(failure, ProviderRateLimited)
    assert failure.retry_after == 3.0
    assert failure.message == "HTTP 429"


def test_classify_passes_provider_failures_through():
    original = ProviderAuthError("bad key")
    classified = classify_failure(original, "openai")
    assert classified is original
    assert classified.provider_id == "openai"


def test_classify_timeouts():
    assert isinstance(classify_failure(asyncio.TimeoutError(), "p"), ProviderTimeout)
    assert isinstance(classify_failure(httpx.ReadTimeout("slow"), "p"), ProviderTimeout)


def test_classify_http_status_error():
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    response = httpx.Response(429, headers={"Retry-After": "2"}, text="busy", request=request)
    exc = httpx.HTTPStatusError("429", request=request, response=response)

    failure = classify_failure(exc, "p")

    assert isinstance(failure, ProviderRateLimited)
    assert failure.retry_after == 2.0


def test_classify_transport_and_connection_errors():
    assert classify_failure(httpx.ConnectError("refused"), "p").kind == FailureKind.NETWORK
    assert classify_failure(ConnectionResetError("reset"), "p").kind == FailureKind.NETWORK


def test_classify_unknown_errors():
    assert classify_failure(RuntimeError("429 Too Many Requests"), "p").kind == FailureKind.RATE_LIMIT
    unknown = classify_failure(ValueError("weird"), "p")
    assert unknown.kind == FailureKind.UNKNOWN
    assert unknown.to_failure().provider_id == "p"
