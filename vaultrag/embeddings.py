"""
Embedding pipeline: chunk notes and embed chunks with a throttled provider.

Embedding requests are issued in fixed-size batches. Requests within a
batch run concurrently; the next batch starts after the whole batch has
finished and a short pause has elapsed. A batch call is all-or-nothing:
if any request fails the error propagates and no vectors are returned.
"""

import asyncio
import logging
from typing import Sequence

from .chunker import chunk_document
from .config import RagConfig
from .errors import DimensionMismatchError
from .providers.base import EmbeddingProvider
from .types import Chunk

logger = logging.getLogger(__name__)


class EmbeddingPipeline:
    """
    Chunking and embedding with hot-swappable settings and provider.

    Args:
        provider: Embedding provider
        config: Chunking and batching settings
    """

    def __init__(self, provider: EmbeddingProvider, config: RagConfig | None = None):
        self._provider = provider
        self._config = config or RagConfig()

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def config(self) -> RagConfig:
        return self._config

    def update(self, config: RagConfig) -> None:
        """Replace settings. Takes effect from the next call."""
        self._config = config

    def update_provider(self, provider: EmbeddingProvider) -> None:
        """Replace the embedding provider. Takes effect from the next call."""
        self._provider = provider

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Provider errors propagate."""
        return await self._provider.embed(text)

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed many texts, preserving order.

        Raises:
            ProviderError: If any request fails
            DimensionMismatchError: If the provider returns vectors of differing length
        """
        # Snapshot settings and provider so a concurrent update() can't split a call
        provider = self._provider
        batch_size = self._config.embed_batch_size
        delay = self._config.embed_batch_delay

        results: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            vectors = await asyncio.gather(*(provider.embed(t) for t in batch))
            results.extend(vectors)
            if start + batch_size < len(texts) and delay > 0:
                await asyncio.sleep(delay)

        if results:
            expected = len(results[0])
            for i, vector in enumerate(results):
                if len(vector) != expected:
                    raise DimensionMismatchError(expected, len(vector), f"text {i} of batch")
        return results

    def chunk(self, content: str, source_path: str, note_title: str) -> list[Chunk]:
        """Chunk a note with the current settings."""
        return chunk_document(
            content,
            source_path,
            note_title,
            chunk_size=self._config.chunk_size,
            overlap=self._config.chunk_overlap,
        )

    async def process_document(
        self, content: str, source_path: str, note_title: str
    ) -> tuple[list[Chunk], list[list[float]]]:
        """Chunk a note and embed every chunk."""
        chunks = self.chunk(content, source_path, note_title)
        if not chunks:
            return [], []
        embeddings = await self.embed_batch([c.content for c in chunks])
        logger.debug("Embedded %d chunks for %s", len(chunks), source_path)
        return chunks, embeddings
