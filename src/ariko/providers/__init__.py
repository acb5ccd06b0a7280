"""LLM provider strategies: one wire-format adapter per backend."""

from .base import AIProvider, ApiKeys, ProviderStrategy, StreamBuffer
from .gemini_provider import GeminiStrategy
from .ollama import OllamaStrategy
from .openai_provider import OpenAIStrategy

__all__ = [
    "AIProvider",
    "ApiKeys",
    "ProviderStrategy",
    "StreamBuffer",
    "GeminiStrategy",
    "OllamaStrategy",
    "OpenAIStrategy",
    "default_strategies",
]


def default_strategies() -> dict[AIProvider, ProviderStrategy]:
    """Return a fresh strategy registry covering every supported provider."""
    return {
        AIProvider.GOOGLE: GeminiStrategy(),
        AIProvider.OPENAI: OpenAIStrategy(),
        AIProvider.OLLAMA: OllamaStrategy(),
    }
