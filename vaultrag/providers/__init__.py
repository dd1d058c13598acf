"""
Provider implementations for embeddings, chat completion and note access.

Embedding and LLM providers register themselves with the global registry
when their module is imported.
"""

from .base import (
    ChangeSource,
    DocumentSource,
    EmbeddingProvider,
    LLMProvider,
    ProviderRegistry,
    get_registry,
)

__all__ = [
    "ChangeSource",
    "DocumentSource",
    "EmbeddingProvider",
    "LLMProvider",
    "ProviderRegistry",
    "get_registry",
]
