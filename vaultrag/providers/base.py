"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.

Embedding and LLM providers are asynchronous: indexing and retrieval run on
an event loop and await provider calls. The document source is a plain
synchronous file reader; callers move it off the loop with to_thread().
"""

from collections.abc import AsyncIterator, Sequence
from typing import Protocol, runtime_checkable

from ..types import ChangeEvent, Message, SourceDocument


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider (and model) must be used for indexing and querying;
    vectors from different models are not comparable.

    Example implementation:
        class OpenAICompatibleEmbedding:
            async def embed(self, text: str) -> list[float]:
                resp = await self._client.post("/v1/embeddings",
                                               json={"model": self.model_name, "input": text})
                return resp.json()["data"][0]["embedding"]
    """

    @property
    def model_name(self) -> str:
        """Model identifier, recorded with the index to detect model switches."""
        ...

    async def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Raises:
            ProviderError: On network, authentication or malformed-response failures
        """
        ...


# -----------------------------------------------------------------------------
# Chat Completion
# -----------------------------------------------------------------------------

@runtime_checkable
class LLMProvider(Protocol):
    """
    Generates chat completions.

    Within the index this is only used to rewrite conversational follow-ups
    into standalone search queries.
    """

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """
        Return the assistant reply for a conversation.

        Raises:
            ProviderError: If the call fails
        """
        ...

    def stream(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        """Yield the assistant reply as incremental text pieces."""
        ...


# -----------------------------------------------------------------------------
# Document Source
# -----------------------------------------------------------------------------

@runtime_checkable
class DocumentSource(Protocol):
    """
    Reads notes from a vault.

    Paths are vault-relative with ``/`` separators.
    """

    def read(self, path: str) -> SourceDocument:
        """
        Read a note.

        Raises:
            FileNotFoundError: If the note no longer exists
        """
        ...

    def list_documents(self) -> list[str]:
        """All note paths in the vault."""
        ...


@runtime_checkable
class ChangeSource(Protocol):
    """A document source that can report what changed since it last looked."""

    def scan_changes(self) -> list[ChangeEvent]:
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the store configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_embedding("local", OpenAICompatibleEmbedding)
        registry.register_embedding("gemini", GeminiEmbedding)

        # Later, from config:
        provider = registry.create_embedding("local", {"base_url": "http://localhost:1234"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._llm_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Importing registers the classes; SDKs are only imported on construction
        from . import embeddings  # noqa: F401
        from . import llm  # noqa: F401

    # Registration methods

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def register_llm(self, name: str, provider_class: type) -> None:
        """Register an LLM provider class."""
        self._llm_providers[name] = provider_class

    # Factory methods

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}. "
                f"Install missing dependencies or check provider name."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except Exception as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}"
            ) from e

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("embedding", name, self._embedding_providers, params)

    def create_llm(self, name: str, params: dict | None = None) -> LLMProvider:
        """Create an LLM provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("llm", name, self._llm_providers, params)

    # Introspection

    def list_embedding_providers(self) -> list[str]:
        """List registered embedding provider names."""
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())

    def list_llm_providers(self) -> list[str]:
        """List registered LLM provider names."""
        self._ensure_providers_loaded()
        return list(self._llm_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
