"""
Provider interfaces and registry for kitchen.

Concrete providers (OpenAI, Anthropic, Ollama, passthrough) register
themselves with the global registry when their module is imported; the
registry imports them lazily on first use.
"""

from .base import (
    EmbeddingProvider,
    ProviderRegistry,
    SummarizationProvider,
    get_registry,
)

__all__ = [
    "EmbeddingProvider",
    "ProviderRegistry",
    "SummarizationProvider",
    "get_registry",
]
