"""
Contract every generation backend implements.

The router only talks to `BackendAdapter`; concrete adapters translate
`ChatMessage` lists into their wire format and raise `ProviderFailure`
subclasses so the router can decide whether to retry or advance.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from docforge.models import BackendResponse, ChatMessage, ProviderCapabilities, ProviderConfig, TokenUsage

MessageLike = Union[ChatMessage, Mapping[str, Any]]


def coerce_messages(messages: Iterable[MessageLike]) -> List[ChatMessage]:
    return [m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m) for m in messages]


def estimate_tokens(messages: Sequence[ChatMessage]) -> int:
    """
    Rough prompt size: four characters per token, with a fixed per-message
    overhead for role markers.
    """
    chars = sum(len(m.content) + len(m.role) + 10 for m in messages)
    return math.ceil(chars / 4)


class BackendAdapter(ABC):
    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @abstractmethod
    async def generate(
        self, messages: Sequence[ChatMessage], options: Optional[Dict[str, Any]] = None
    ) -> BackendResponse:
        ...

    async def is_available(self) -> bool:
        return True

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_tokens=self.config.max_tokens, model_versions=[self.config.model])

    def estimate_tokens(self, messages: Sequence[ChatMessage]) -> int:
        return estimate_tokens(messages)

    def estimate_cost(self, usage: TokenUsage) -> float:
        return usage.prompt_tokens * self.config.cost_input + usage.completion_tokens * self.config.cost_output

    def request_options(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = self.config.generation_options()
        if overrides:
            options.update({k: v for k, v in overrides.items() if v is not None})
        return options

    async def aclose(self) -> None:
        return None


__all__ = ["BackendAdapter", "MessageLike", "coerce_messages", "estimate_tokens"]
