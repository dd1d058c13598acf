"""
Shared pytest fixtures for vaultrag tests.

Provides mock providers so tests never touch the network.
"""

import hashlib
from pathlib import Path

import pytest

from vaultrag.config import RagConfig
from vaultrag.embeddings import EmbeddingPipeline
from vaultrag.engine import IndexingEngine
from vaultrag.errors import ProviderError
from vaultrag.hash_registry import ContentHashRegistry
from vaultrag.types import SourceDocument
from vaultrag.vector_store import VectorStore


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings based on text hash - no model calls.
    """

    dimension = 16
    model_name = "mock-model"

    def __init__(self):
        self.embed_calls = 0
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        """Generate deterministic embedding from text hash."""
        self.embed_calls += 1
        self.texts.append(text)
        h = hashlib.md5(text.encode()).hexdigest()
        return [int(h[i:i + 2], 16) / 255.0 + 0.01 for i in range(0, 32, 2)]


class FailingEmbeddingProvider(MockEmbeddingProvider):
    """Raises ProviderError for texts containing a marker word (or for everything)."""

    def __init__(self, marker: str | None = None):
        super().__init__()
        self.marker = marker

    async def embed(self, text: str) -> list[float]:
        if self.marker is None or self.marker in text:
            self.embed_calls += 1
            raise ProviderError("embedding service unavailable", "mock")
        return await super().embed(text)


class MockLLMProvider:
    """Returns a canned reply and records the messages it was sent."""

    def __init__(self, reply: str = "rewritten query", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.calls: list[dict] = []

    async def complete(self, messages, *, temperature=0.7, max_tokens=2000) -> str:
        self.calls.append({
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.fail:
            raise ProviderError("llm offline", "mock")
        return self.reply

    async def stream(self, messages, *, temperature=0.7, max_tokens=2000):
        for word in self.reply.split():
            yield word


class InMemoryDocumentSource:
    """Document source backed by a dict of path -> content."""

    def __init__(self, notes: dict[str, str] | None = None):
        self.notes = dict(notes or {})
        self.reads: list[str] = []

    def read(self, path: str) -> SourceDocument:
        self.reads.append(path)
        if path not in self.notes:
            raise FileNotFoundError(path)
        return SourceDocument(path=path, content=self.notes[path], title=Path(path).stem, mtime=1000)

    def list_documents(self) -> list[str]:
        return sorted(self.notes)


def vector(*values: float) -> list[float]:
    """Shorthand for building embeddings in tests."""
    return [float(v) for v in values]


@pytest.fixture
def rag_config():
    """Settings with no delays so tests run instantly."""
    return RagConfig(
        chunk_size=4,
        chunk_overlap=1,
        embed_batch_delay=0.0,
        persist_delay=0.0,
        excluded_folders=["Templates", ".obsidian"],
    )


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def mock_llm():
    return MockLLMProvider()


@pytest.fixture
def store(tmp_path):
    s = VectorStore(tmp_path / "vectors.json", persist_delay=0.0)
    s.initialize()
    return s


@pytest.fixture
def hashes(tmp_path):
    h = ContentHashRegistry(tmp_path / "content_hashes.json", persist_delay=0.0)
    h.load()
    return h


@pytest.fixture
def source():
    return InMemoryDocumentSource({
        "notes/garden.md": "tomatoes need full sun and regular watering in summer",
        "notes/travel.md": "pack light and book trains early for the alps trip",
        "Templates/daily.md": "date mood tasks",
    })


@pytest.fixture
def engine_parts(store, hashes, mock_embedding_provider, source, rag_config):
    """An IndexingEngine wired to in-memory parts; returns (engine, provider)."""
    pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
    engine = IndexingEngine(store, hashes, pipeline, source, rag_config)
    return engine, mock_embedding_provider
