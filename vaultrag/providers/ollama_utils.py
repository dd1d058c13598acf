"""
Shared Ollama utilities: server address resolution and model auto-pull.
"""

import asyncio
import json
import logging
import os
import sys

import requests

from ..errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def ollama_base_url(base_url: str | None = None) -> str:
    """Resolve the Ollama server URL: explicit value, then OLLAMA_HOST, then the default.

    OLLAMA_HOST may be given without a scheme (``0.0.0.0:11434``).
    """
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


def _is_installed(model: str, installed: set[str]) -> bool:
    # Ollama lists models as "name:tag" and drops an explicit ":latest"
    bare = model.split(":", 1)[0]
    return bool({model, f"{model}:latest", bare, f"{bare}:latest"} & installed)


def ollama_ensure_model(base_url: str, model: str) -> None:
    """Check if an Ollama model is available locally; pull it if not.

    Streams pull progress to stderr so the user sees download status.
    Raises RuntimeError if the pull fails or Ollama is unreachable.
    """
    try:
        resp = requests.get(f"{base_url}/api/tags", timeout=5)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise RuntimeError(
            f"Cannot reach Ollama at {base_url}. "
            "Is Ollama running? Start it with: ollama serve"
        ) from e

    installed = {m["name"] for m in resp.json().get("models", [])}
    if _is_installed(model, installed):
        return

    logger.info("Pulling Ollama model %s (first use)...", model)
    print(f"Pulling Ollama model '{model}' (first use)...", file=sys.stderr)

    try:
        resp = requests.post(
            f"{base_url}/api/pull",
            json={"name": model, "stream": True},
            stream=True,
            timeout=600,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise RuntimeError(f"Failed to pull Ollama model '{model}': {e}") from e

    last_status = ""
    for line in resp.iter_lines():
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue

        if data.get("error"):
            print("", file=sys.stderr)
            raise RuntimeError(f"Ollama pull failed for '{model}': {data['error']}")

        status = data.get("status", "")
        total = data.get("total", 0)
        completed = data.get("completed", 0)
        if total and completed:
            print(f"\r  {status}: {int(completed / total * 100)}%", end="", file=sys.stderr, flush=True)
        elif status != last_status:
            print(f"\n  {status}", end="", file=sys.stderr, flush=True)
        last_status = status

    print(f"\n  Model '{model}' ready.", file=sys.stderr)


class OllamaModelCheck:
    """Makes sure a model is installed before its first request.

    The check (and any pull) runs once, in a worker thread, so it never
    blocks the event loop. A failed check is retried on the next call.
    """

    def __init__(self, base_url: str, model: str, enabled: bool = True):
        self.base_url = base_url
        self.model = model
        self._done = not enabled
        self._lock: asyncio.Lock | None = None

    @property
    def done(self) -> bool:
        return self._done

    async def ensure(self, provider_name: str = "ollama") -> None:
        if self._done:
            return
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._done:
                return
            try:
                await asyncio.to_thread(ollama_ensure_model, self.base_url, self.model)
            except RuntimeError as e:
                raise ProviderError(str(e), provider_name) from e
            self._done = True
