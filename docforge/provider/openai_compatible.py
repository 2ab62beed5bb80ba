"""
Reference adapter for OpenAI-compatible chat-completions endpoints.
"""

from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional, Sequence

import httpx

from docforge.errors import ConfigurationError, ProviderFailure, ProviderNetworkError, ProviderTimeout
from docforge.logging_config import logger
from docforge.models import BackendResponse, ChatMessage, ProviderCapabilities, ProviderConfig, TokenUsage
from docforge.provider.base import BackendAdapter
from docforge.routing.error_classifier import failure_for_status, parse_retry_after


class OpenAICompatibleAdapter(BackendAdapter):
    def __init__(
        self,
        config: ProviderConfig,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        supports_streaming: bool = True,
        supports_function_calling: bool = True,
    ) -> None:
        super().__init__(config)
        if not base_url:
            raise ConfigurationError("base_url is required", details={"provider_id": config.provider_id})
        self.base_url = base_url.rstrip("/")
        if api_key is None and config.credential_ref:
            api_key = os.getenv(config.credential_ref)
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._supports_streaming = supports_streaming
        self._supports_function_calling = supports_function_calling

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            max_tokens=self.config.max_tokens,
            supports_streaming=self._supports_streaming,
            supports_system_messages=True,
            supports_function_calling=self._supports_function_calling,
            model_versions=[self.config.model],
        )

    async def generate(
        self, messages: Sequence[ChatMessage], options: Optional[Dict[str, Any]] = None
    ) -> BackendResponse:
        payload: Dict[str, Any] = dict(options or self.config.generation_options())
        payload["messages"] = [m.model_dump(exclude_none=True) for m in messages]

        url = f"{self.base_url}/chat/completions"
        started = time.perf_counter()
        try:
            resp = await self._client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(
                f"Request to {url} timed out", provider_id=self.provider_id
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderNetworkError(
                f"Transport error calling {url}: {exc}", provider_id=self.provider_id
            ) from exc
        latency_ms = (time.perf_counter() - started) * 1000.0

        if resp.status_code >= 400:
            logger.warning(
                "openai_compatible: provider=%s status=%s body=%s",
                self.provider_id,
                resp.status_code,
                resp.text[:500],
            )
            raise failure_for_status(
                resp.status_code,
                resp.text,
                provider_id=self.provider_id,
                retry_after=parse_retry_after(resp.headers.get("retry-after")),
            )

        try:
            body = resp.json()
            choice = body["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderFailure(
                "Malformed chat completion response",
                provider_id=self.provider_id,
                status_code=resp.status_code,
                details={"body": resp.text[:500]},
            ) from exc
        if not content:
            raise ProviderFailure(
                "Empty completion content", provider_id=self.provider_id, status_code=resp.status_code
            )

        raw_usage = body.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
            completion_tokens=int(raw_usage.get("completion_tokens") or 0),
        )
        return BackendResponse(
            provider_id=self.provider_id,
            model=body.get("model") or payload.get("model") or self.config.model,
            content=content,
            usage=usage,
            cost=self.estimate_cost(usage),
            finish_reason=choice.get("finish_reason") or "stop",
            latency_ms=latency_ms,
        )

    async def is_available(self) -> bool:
        try:
            resp = await self._client.get(f"{self.base_url}/models", headers=self._headers())
        except httpx.HTTPError as exc:
            logger.info("openai_compatible: availability probe for %s failed: %s", self.provider_id, exc)
            return False
        return resp.status_code < 400

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["OpenAICompatibleAdapter"]
