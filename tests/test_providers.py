"""
Tests for HTTP embedding and LLM providers, using httpx mock transports.
"""

import json

import httpx
import pytest

from vaultrag.errors import ProviderError
from vaultrag.providers import EmbeddingProvider, LLMProvider, ProviderRegistry, get_registry
from vaultrag.providers.embeddings import GeminiEmbedding, OllamaEmbedding, OpenAICompatibleEmbedding
from vaultrag.providers.llm import GeminiLLM, OllamaLLM, OpenAICompatibleLLM
from vaultrag.providers import ollama_utils
from vaultrag.providers.ollama_utils import _is_installed, ollama_base_url
from vaultrag.types import Message


def mock_client(handler, base_url="http://test") -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


class Recorder:
    """Request handler that records requests and returns a fixed response."""

    def __init__(self, status=200, payload=None, text=None):
        self.status = status
        self.payload = payload
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.payload)

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


MESSAGES = [Message("system", "be brief"), Message("user", "hello")]


# -----------------------------------------------------------------------------
# Embeddings
# -----------------------------------------------------------------------------

class TestOpenAICompatibleEmbedding:

    @pytest.mark.asyncio
    async def test_embed(self):
        handler = Recorder(payload={"data": [{"embedding": [0.1, 0.2, 0.3]}]})
        provider = OpenAICompatibleEmbedding(model="nomic", client=mock_client(handler))

        assert await provider.embed("some text") == [0.1, 0.2, 0.3]
        assert handler.requests[0].url.path == "/v1/embeddings"
        assert handler.body == {"model": "nomic", "input": "some text"}
        assert provider.model_name == "nomic"
        assert isinstance(provider, EmbeddingProvider)

    @pytest.mark.asyncio
    async def test_http_error_wrapped(self):
        handler = Recorder(status=500, text="model not loaded")
        provider = OpenAICompatibleEmbedding(client=mock_client(handler))
        with pytest.raises(ProviderError) as exc_info:
            await provider.embed("x")
        assert "HTTP 500" in str(exc_info.value)
        assert exc_info.value.provider == "local"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"data": []}, {"data": [{"embedding": []}]}])
    async def test_malformed_response(self, payload):
        provider = OpenAICompatibleEmbedding(client=mock_client(Recorder(payload=payload)))
        with pytest.raises(ProviderError):
            await provider.embed("x")

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAICompatibleEmbedding(client=mock_client(refuse))
        with pytest.raises(ProviderError):
            await provider.embed("x")


class TestGeminiEmbedding:

    def test_requires_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError):
            GeminiEmbedding()

    @pytest.mark.asyncio
    async def test_bearer_auth_and_path(self):
        handler = Recorder(payload={"data": [{"embedding": [1.0, 0.0]}]})
        provider = GeminiEmbedding(api_key="g-key", client=mock_client(handler))
        await provider.embed("x")
        request = handler.requests[0]
        assert request.url.path == "/embeddings"
        assert request.headers["Authorization"] == "Bearer g-key"
        assert handler.body["model"] == "gemini-embedding-001"


class TestOllamaEmbedding:

    @pytest.mark.asyncio
    async def test_embed(self):
        handler = Recorder(payload={"embeddings": [[0.5, 0.5]]})
        provider = OllamaEmbedding(client=mock_client(handler), ensure_model=False)
        assert await provider.embed("x") == [0.5, 0.5]
        assert handler.requests[0].url.path == "/api/embed"

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "0.0.0.0:11434")
        assert ollama_base_url() == "http://0.0.0.0:11434"
        assert ollama_base_url("http://box:1/") == "http://box:1"

    def test_installed_name_matching(self):
        assert _is_installed("llama3.2", {"llama3.2:latest"})
        assert _is_installed("nomic-embed-text:latest", {"nomic-embed-text:latest"})
        assert not _is_installed("mistral", {"llama3.2:latest"})

    @pytest.mark.asyncio
    async def test_model_check_deferred_to_first_embed(self, monkeypatch):
        checked = []
        monkeypatch.setattr(ollama_utils, "ollama_ensure_model", lambda url, model: checked.append(model))
        handler = Recorder(payload={"embeddings": [[0.5, 0.5]]})
        provider = OllamaEmbedding(client=mock_client(handler))
        assert checked == []

        await provider.embed("x")
        await provider.embed("y")
        assert checked == ["nomic-embed-text"]

    @pytest.mark.asyncio
    async def test_unreachable_server_is_provider_error(self, monkeypatch):
        def unreachable(url, model):
            raise RuntimeError(f"Cannot reach Ollama at {url}")

        monkeypatch.setattr(ollama_utils, "ollama_ensure_model", unreachable)
        handler = Recorder(payload={"embeddings": [[0.5, 0.5]]})
        provider = OllamaEmbedding(client=mock_client(handler))
        with pytest.raises(ProviderError, match="Cannot reach Ollama"):
            await provider.embed("x")
        assert handler.requests == []


# -----------------------------------------------------------------------------
# LLMs
# -----------------------------------------------------------------------------

class TestOpenAICompatibleLLM:

    @pytest.mark.asyncio
    async def test_complete(self):
        handler = Recorder(payload={"choices": [{"message": {"content": "hi there"}}]})
        llm = OpenAICompatibleLLM(client=mock_client(handler))

        assert await llm.complete(MESSAGES, temperature=0.0, max_tokens=50) == "hi there"
        body = handler.body
        assert handler.requests[0].url.path == "/v1/chat/completions"
        assert body["temperature"] == 0.0
        assert body["max_tokens"] == 50
        assert body["messages"][0] == {"role": "system", "content": "be brief"}
        assert "stream" not in body
        assert isinstance(llm, LLMProvider)

    @pytest.mark.asyncio
    async def test_defaults(self):
        handler = Recorder(payload={"choices": [{"message": {"content": "x"}}]})
        llm = OpenAICompatibleLLM(client=mock_client(handler))
        await llm.complete(MESSAGES)
        assert handler.body["temperature"] == 0.7
        assert handler.body["max_tokens"] == 2000
        assert handler.body["model"] == "qwen/qwen3-vl-4b"

    @pytest.mark.asyncio
    async def test_stream(self):
        sse = (
            'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
            'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
            'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
            "data: [DONE]\n\n"
        )
        handler = Recorder(text=sse)
        llm = OpenAICompatibleLLM(client=mock_client(handler))
        pieces = [p async for p in llm.stream(MESSAGES)]
        assert pieces == ["Hel", "lo"]
        assert handler.body["stream"] is True

    @pytest.mark.asyncio
    async def test_error_wrapped(self):
        llm = OpenAICompatibleLLM(client=mock_client(Recorder(status=401, payload={})))
        with pytest.raises(ProviderError):
            await llm.complete(MESSAGES)


class TestGeminiLLM:

    @pytest.mark.asyncio
    async def test_path_and_model(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        handler = Recorder(payload={"choices": [{"message": {"content": "ok"}}]})
        llm = GeminiLLM(client=mock_client(handler))
        await llm.complete(MESSAGES)
        assert handler.requests[0].url.path == "/chat/completions"
        assert handler.requests[0].headers["Authorization"] == "Bearer env-key"
        assert handler.body["model"] == "gemini-2.5-flash"


class TestOllamaLLM:

    @pytest.mark.asyncio
    async def test_complete_maps_options(self):
        handler = Recorder(payload={"message": {"content": " answer "}})
        llm = OllamaLLM(client=mock_client(handler), ensure_model=False)
        assert await llm.complete(MESSAGES, temperature=0.1, max_tokens=20) == "answer"
        assert handler.body["options"] == {"temperature": 0.1, "num_predict": 20}
        assert handler.body["stream"] is False

    @pytest.mark.asyncio
    async def test_stream_ndjson(self):
        lines = "\n".join([
            json.dumps({"message": {"content": "a"}, "done": False}),
            json.dumps({"message": {"content": "b"}, "done": False}),
            json.dumps({"message": {"content": ""}, "done": True}),
        ])
        llm = OllamaLLM(client=mock_client(Recorder(text=lines)), ensure_model=False)
        assert [p async for p in llm.stream(MESSAGES)] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_model_check_runs_once(self, monkeypatch):
        checked = []
        monkeypatch.setattr(ollama_utils, "ollama_ensure_model", lambda url, model: checked.append(model))
        handler = Recorder(payload={"message": {"content": "ok"}})
        llm = OllamaLLM(client=mock_client(handler))
        assert checked == []
        await llm.complete(MESSAGES)
        await llm.complete(MESSAGES)
        assert checked == ["llama3.2"]


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

class TestRegistry:

    def test_builtin_providers_registered(self):
        registry = get_registry()
        assert {"local", "gemini", "ollama", "openai"} <= set(registry.list_embedding_providers())
        assert {"local", "gemini", "ollama", "openai", "anthropic"} <= set(registry.list_llm_providers())

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            get_registry().create_embedding("nope")

    def test_construction_failure_wrapped(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(RuntimeError, match="gemini"):
            get_registry().create_embedding("gemini")

    def test_create_with_params(self):
        provider = get_registry().create_embedding("local", {"model": "m", "base_url": "http://h:1"})
        assert isinstance(provider, OpenAICompatibleEmbedding)
        assert provider.base_url == "http://h:1"

    def test_custom_registration(self):
        class Custom:
            def __init__(self, size=3):
                self.size = size

        registry = ProviderRegistry()
        registry._lazy_loaded = True
        registry.register_embedding("custom", Custom)
        assert registry.create_embedding("custom", {"size": 5}).size == 5
        assert registry.list_embedding_providers() == ["custom"]
