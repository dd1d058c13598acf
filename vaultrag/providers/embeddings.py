"""
Embedding providers.

The HTTP providers talk to OpenAI-compatible ``/embeddings`` endpoints with
httpx; the OpenAI provider uses the official SDK. Every provider raises
ProviderError for call failures so callers see one error type.
"""

import logging
import os

import httpx

from ..errors import ProviderError
from .base import get_registry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"


def _gemini_key(api_key: str | None) -> str:
    key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    if not key:
        raise ValueError("Gemini API key required. Set GEMINI_API_KEY or GOOGLE_API_KEY")
    return key


def _parse_embedding(payload: dict, provider: str) -> list[float]:
    """Extract the first vector from an OpenAI-style embeddings response."""
    try:
        vector = payload["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as e:
        raise ProviderError(f"Malformed embeddings response from {provider}: {e}", provider) from e
    if not isinstance(vector, list) or not vector:
        raise ProviderError(f"Empty embedding returned by {provider}", provider)
    return [float(x) for x in vector]


class OpenAICompatibleEmbedding:
    """
    Embedding provider for any server exposing ``POST /v1/embeddings``.

    Works with LM Studio, llama.cpp server, vLLM and similar. Default
    endpoint is LM Studio's local server.
    """

    provider_name = "local"

    def __init__(
        self,
        model: str = "text-embedding-nomic-embed-text-v1.5",
        base_url: str = "http://localhost:1234",
        api_key: str | None = None,
        embeddings_path: str = "/v1/embeddings",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._path = embeddings_path
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
        )
        if client is not None:
            self._client.headers.update(headers)

    @property
    def model_name(self) -> str:
        return self.model

    async def embed(self, text: str) -> list[float]:
        try:
            resp = await self._client.post(self._path, json={"model": self.model, "input": text})
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:200] if e.response.text else ""
            raise ProviderError(
                f"{self.provider_name} embedding failed (model={self.model}): "
                f"HTTP {e.response.status_code}. {detail}",
                self.provider_name,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(
                f"{self.provider_name} embedding failed (model={self.model}): {e}",
                self.provider_name,
            ) from e
        return _parse_embedding(payload, self.provider_name)

    async def aclose(self) -> None:
        await self._client.aclose()


class GeminiEmbedding(OpenAICompatibleEmbedding):
    """
    Embedding provider using Gemini's OpenAI-compatible endpoint.

    Requires: GEMINI_API_KEY or GOOGLE_API_KEY environment variable.
    """

    provider_name = "gemini"

    def __init__(
        self,
        model: str = "gemini-embedding-001",
        api_key: str | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            model=model,
            base_url=base_url,
            api_key=_gemini_key(api_key),
            embeddings_path="/embeddings",
            timeout=timeout,
            client=client,
        )


class OllamaEmbedding:
    """
    Embedding provider using Ollama's local API.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    Pulls the model before the first embedding request.
    """

    provider_name = "ollama"

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
        ensure_model: bool = True,
    ):
        from .ollama_utils import OllamaModelCheck, ollama_base_url

        self.model = model
        self.base_url = ollama_base_url(base_url)
        self._model_check = OllamaModelCheck(self.base_url, self.model, enabled=ensure_model)
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @property
    def model_name(self) -> str:
        return self.model

    async def embed(self, text: str) -> list[float]:
        await self._model_check.ensure(self.provider_name)
        try:
            resp = await self._client.post("/api/embed", json={"model": self.model, "input": text})
            resp.raise_for_status()
            vectors = resp.json()["embeddings"]
            vector = vectors[0]
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Ollama embedding failed (model={self.model}): "
                f"HTTP {e.response.status_code} from {self.base_url}",
                self.provider_name,
            ) from e
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Ollama embedding failed (model={self.model}): {e}", self.provider_name) from e
        return [float(x) for x in vector]

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIEmbedding:
    """
    Embedding provider using OpenAI's API.

    Requires: VAULTRAG_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    provider_name = "openai"

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise RuntimeError("OpenAIEmbedding requires 'openai' library")

        key = api_key or os.environ.get("VAULTRAG_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError("OpenAI API key required. Set VAULTRAG_OPENAI_API_KEY or OPENAI_API_KEY")

        self.model = model
        self._client = AsyncOpenAI(api_key=key, base_url=base_url)

    @property
    def model_name(self) -> str:
        return self.model

    async def embed(self, text: str) -> list[float]:
        from openai import OpenAIError

        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except OpenAIError as e:
            raise ProviderError(f"OpenAI embedding failed (model={self.model}): {e}", self.provider_name) from e
        if not response.data:
            raise ProviderError("Empty embeddings response from OpenAI", self.provider_name)
        return list(response.data[0].embedding)

    async def aclose(self) -> None:
        await self._client.close()


# Register providers
_registry = get_registry()
_registry.register_embedding("local", OpenAICompatibleEmbedding)
_registry.register_embedding("gemini", GeminiEmbedding)
_registry.register_embedding("ollama", OllamaEmbedding)
_registry.register_embedding("openai", OpenAIEmbedding)
