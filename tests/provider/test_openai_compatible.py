import json

import httpx
import pytest

from docforge.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderFailure,
    ProviderNetworkError,
    ProviderRateLimited,
)
from docforge.models import ChatMessage, ProviderConfig
from docforge.provider.openai_compatible import OpenAICompatibleAdapter

BASE_URL = "https://llm.example.com/v1"
MESSAGES = [
    ChatMessage(role="system", content="You write product requirement documents."),
    ChatMessage(role="user", content="A todo app"),
]


def _config(**kwargs):
    defaults = dict(provider_id="openai", model="gpt-4o-mini", cost_input=0.001, cost_output=0.002)
    defaults.update(kwargs)
    return ProviderConfig(**defaults)


def _adapter(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("api_key", "sk-test")
    return OpenAICompatibleAdapter(kwargs.pop("config", _config()), base_url=BASE_URL, client=client, **kwargs)


def _completion(content="# Document", **extra):
    body = {
        "model": "gpt-4o-mini-2024",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 50},
    }
    body.update(extra)
    return body


@pytest.mark.asyncio
async def test_generate_success_posts_chat_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion())

    adapter = _adapter(handler)
    response = await adapter.generate(MESSAGES, {"model": "gpt-4o-mini", "temperature": 0.2})

    assert seen["url"] == f"{BASE_URL}/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["temperature"] == 0.2
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]
    assert response.content == "# Document"
    assert response.model == "gpt-4o-mini-2024"
    assert response.usage.total_tokens == 150
    assert response.cost == pytest.approx(100 * 0.001 + 50 * 0.002)
    assert response.latency_ms is not None


@pytest.mark.asyncio
async def test_generate_uses_config_options_by_default():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion())

    adapter = _adapter(handler, config=_config(temperature=0.3, max_tokens=512))
    await adapter.generate(MESSAGES)

    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["max_tokens"] == 512
    assert seen["body"]["temperature"] == 0.3


@pytest.mark.asyncio
async def test_unauthorized_maps_to_auth_error():
    adapter = _adapter(lambda request: httpx.Response(401, json={"error": {"message": "Invalid API key"}}))

    with pytest.raises(ProviderAuthError) as exc_info:
        await adapter.generate(MESSAGES)

    assert exc_info.value.message == "Invalid API key"
    assert exc_info.value.provider_id == "openai"


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    adapter = _adapter(
        lambda request: httpx.Response(429, headers={"Retry-After": "4"}, text="Too Many Requests")
    )

    with pytest.raises(ProviderRateLimited) as exc_info:
        await adapter.generate(MESSAGES)

    assert exc_info.value.retry_after == 4.0


@pytest.mark.asyncio
async def test_server_error_is_network_failure():
    adapter = _adapter(lambda request: httpx.Response(503, text="overloaded"))
    with pytest.raises(ProviderNetworkError):
        await adapter.generate(MESSAGES)


@pytest.mark.asyncio
async def test_malformed_and_empty_bodies_are_rejected():
    malformed = _adapter(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(ProviderFailure, match="Malformed"):
        await malformed.generate(MESSAGES)

    empty = _adapter(lambda request: httpx.Response(200, json=_completion(content="")))
    with pytest.raises(ProviderFailure, match="Empty"):
        await empty.generate(MESSAGES)


@pytest.mark.asyncio
async def test_transport_error_is_network_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = _adapter(handler)
    with pytest.raises(ProviderNetworkError):
        await adapter.generate(MESSAGES)
    assert await adapter.is_available() is False


@pytest.mark.asyncio
async def test_is_available_probes_models_endpoint():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        return httpx.Response(200, json={"data": []})

    assert await _adapter(handler).is_available() is True
    assert await _adapter(lambda request: httpx.Response(500)).is_available() is False


@pytest.mark.asyncio
async def test_api_key_is_resolved_from_credential_ref(monkeypatch):
    monkeypatch.setenv("DOCFORGE_TEST_KEY", "sk-from-env")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=_completion())

    adapter = _adapter(handler, api_key=None, config=_config(credential_ref="DOCFORGE_TEST_KEY"))
    await adapter.generate(MESSAGES)

    assert seen["auth"] == "Bearer sk-from-env"


def test_capabilities_reflect_constructor_flags():
    adapter = _adapter(lambda request: httpx.Response(200), supports_streaming=False)
    caps = adapter.capabilities()
    assert caps.supports_streaming is False
    assert caps.supports_function_calling is True
    assert caps.model_versions == ["gpt-4o-mini"]


def test_base_url_is_required():
    with pytest.raises(ConfigurationError):
        OpenAICompatibleAdapter(_config(), base_url="")
