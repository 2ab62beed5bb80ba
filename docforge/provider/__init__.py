from .base import BackendAdapter, coerce_messages, estimate_tokens
from .openai_compatible import OpenAICompatibleAdapter

__all__ = ["BackendAdapter", "OpenAICompatibleAdapter", "coerce_messages", "estimate_tokens"]
