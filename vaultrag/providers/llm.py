"""
Chat completion providers.

Used to rewrite conversational follow-ups into standalone search queries,
and available to callers that assemble answers from retrieved context.
"""

import json
import logging
import os
from collections.abc import AsyncIterator, Sequence

import httpx

from ..errors import ProviderError
from ..types import Message
from .base import get_registry
from .embeddings import GEMINI_BASE_URL, _gemini_key

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


def _as_dicts(messages: Sequence[Message]) -> list[dict[str, str]]:
    return [m.to_dict() for m in messages]


class OpenAICompatibleLLM:
    """
    LLM provider for any server exposing ``POST /v1/chat/completions``.

    Default endpoint is LM Studio's local server.
    """

    provider_name = "local"

    def __init__(
        self,
        model: str = "qwen/qwen3-vl-4b",
        base_url: str = "http://localhost:1234",
        api_key: str | None = None,
        completions_path: str = "/v1/chat/completions",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._path = completions_path
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

    def _body(self, messages, temperature: float, max_tokens: int, stream: bool) -> dict:
        body = {
            "model": self.model,
            "messages": _as_dicts(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if stream:
            body["stream"] = True
        return body

    def _error(self, e: Exception) -> ProviderError:
        if isinstance(e, httpx.HTTPStatusError):
            return ProviderError(
                f"{self.provider_name} completion failed (model={self.model}): "
                f"HTTP {e.response.status_code}",
                self.provider_name,
            )
        return ProviderError(
            f"{self.provider_name} completion failed (model={self.model}): {e}",
            self.provider_name,
        )

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        try:
            resp = await self._client.post(
                self._path, json=self._body(messages, temperature, max_tokens, stream=False)
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            raise self._error(e) from e
        return content or ""

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent-events response."""
        body = self._body(messages, temperature, max_tokens, stream=True)
        try:
            async with self._client.stream("POST", self._path, json=body) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    event = json.loads(data)
                    choices = event.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta", {}).get("content")
                    if delta:
                        yield delta
        except (httpx.HTTPError, ValueError) as e:
            raise self._error(e) from e

    async def aclose(self) -> None:
        await self._client.aclose()


class GeminiLLM(OpenAICompatibleLLM):
    """
    LLM provider using Gemini's OpenAI-compatible endpoint.

    Requires: GEMINI_API_KEY or GOOGLE_API_KEY environment variable.
    Default model is gemini-2.5-flash.
    """

    provider_name = "gemini"

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: str | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            model=model,
            base_url=base_url,
            api_key=_gemini_key(api_key),
            completions_path="/chat/completions",
            timeout=timeout,
            client=client,
        )


class OllamaLLM:
    """
    LLM provider using Ollama's local chat API.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    Pulls the model before the first chat request.
    """

    provider_name = "ollama"

    def __init__(
        self,
        model: str = "llama3.2",
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

    def _body(self, messages, temperature: float, max_tokens: int, stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": _as_dicts(messages),
            "stream": stream,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        await self._model_check.ensure(self.provider_name)
        try:
            resp = await self._client.post(
                "/api/chat", json=self._body(messages, temperature, max_tokens, stream=False)
            )
            resp.raise_for_status()
            return resp.json()["message"]["content"].strip()
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise ProviderError(f"Ollama completion failed (model={self.model}): {e}", self.provider_name) from e

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        """Yield content pieces from Ollama's newline-delimited JSON stream."""
        await self._model_check.ensure(self.provider_name)
        body = self._body(messages, temperature, max_tokens, stream=True)
        try:
            async with self._client.stream("POST", "/api/chat", json=body) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line:
                        continue
                    data = json.loads(line)
                    if data.get("error"):
                        raise ProviderError(f"Ollama stream failed: {data['error']}", self.provider_name)
                    piece = data.get("message", {}).get("content")
                    if piece:
                        yield piece
                    if data.get("done"):
                        break
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"Ollama completion failed (model={self.model}): {e}", self.provider_name) from e

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAILLM:
    """
    LLM provider using OpenAI's chat API.

    Requires: VAULTRAG_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    provider_name = "openai"

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise RuntimeError("OpenAILLM requires 'openai' library")

        key = api_key or os.environ.get("VAULTRAG_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError("OpenAI API key required. Set VAULTRAG_OPENAI_API_KEY or OPENAI_API_KEY")

        self.model = model
        self._client = AsyncOpenAI(api_key=key, base_url=base_url)

        # GPT-5+ and reasoning models use max_completion_tokens and reject temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self, temperature: float, max_tokens: int) -> dict:
        if self._new_api:
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": temperature}

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        from openai import OpenAIError

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=_as_dicts(messages),
                **self._completion_kwargs(temperature, max_tokens),
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI completion failed (model={self.model}): {e}", self.provider_name) from e
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        from openai import OpenAIError

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=_as_dicts(messages),
                stream=True,
                **self._completion_kwargs(temperature, max_tokens),
            )
            async for event in response:
                if event.choices and event.choices[0].delta.content:
                    yield event.choices[0].delta.content
        except OpenAIError as e:
            raise ProviderError(f"OpenAI completion failed (model={self.model}): {e}", self.provider_name) from e

    async def aclose(self) -> None:
        await self._client.close()


class AnthropicLLM:
    """
    LLM provider using Anthropic's Claude API.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. ANTHROPIC_API_KEY

    System messages are passed through Anthropic's separate ``system`` field.
    """

    provider_name = "anthropic"

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
    ):
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise RuntimeError("AnthropicLLM requires 'anthropic' library")

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("Anthropic API key required. Set ANTHROPIC_API_KEY")

        self.model = model
        self._client = AsyncAnthropic(api_key=key)

    @staticmethod
    def _split_system(messages: Sequence[Message]) -> tuple[str, list[dict[str, str]]]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        rest = [m.to_dict() for m in messages if m.role != "system"]
        return system, rest

    def _kwargs(self, messages, temperature: float, max_tokens: int) -> dict:
        system, rest = self._split_system(messages)
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": rest,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        from anthropic import AnthropicError

        try:
            response = await self._client.messages.create(**self._kwargs(messages, temperature, max_tokens))
        except AnthropicError as e:
            raise ProviderError(f"Anthropic completion failed (model={self.model}): {e}", self.provider_name) from e
        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        from anthropic import AnthropicError

        try:
            async with self._client.messages.stream(**self._kwargs(messages, temperature, max_tokens)) as stream:
                async for text in stream.text_stream:
                    yield text
        except AnthropicError as e:
            raise ProviderError(f"Anthropic completion failed (model={self.model}): {e}", self.provider_name) from e

    async def aclose(self) -> None:
        await self._client.close()


# Register providers
_registry = get_registry()
_registry.register_llm("local", OpenAICompatibleLLM)
_registry.register_llm("gemini", GeminiLLM)
_registry.register_llm("ollama", OllamaLLM)
_registry.register_llm("openai", OpenAILLM)
_registry.register_llm("anthropic", AnthropicLLM)
