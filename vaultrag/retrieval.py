"""
Retrieval pipeline: rewrite, embed, search and format.

A follow-up like "what about the second one?" retrieves poorly on its
own, so when conversation history is available the latest message is
first rewritten by the LLM into a standalone search query. Rewriting is
best-effort; any failure falls back to the original query.
"""

import logging
from typing import Optional, Sequence

from .config import RagConfig
from .embeddings import EmbeddingPipeline
from .providers.base import LLMProvider
from .types import Message, RAGContext, SearchResult
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


CONTEXT_HEADER = "Here are relevant excerpts from your notes:\n\n"

REWRITE_SYSTEM_PROMPT = (
    "You rewrite the user's latest message into a standalone search query "
    "for their personal notes. Resolve pronouns and references using the "
    "conversation. Reply with the query only: no quotes, no explanation."
)

# Prefixes models sometimes put before the query despite instructions
_REWRITE_PREFIXES = ("standalone query:", "search query:", "query:")


def format_context(results: Sequence[SearchResult]) -> str:
    """
    Render search results as a context block for an LLM prompt.

    Results are grouped by note in order of each note's best match; within
    a note, chunks are put back in reading order. Returns an empty string
    when there are no results.
    """
    if not results:
        return ""

    groups: dict[str, list[SearchResult]] = {}
    for result in results:
        groups.setdefault(result.metadata.file_path, []).append(result)

    parts = [CONTEXT_HEADER]
    for chunks in groups.values():
        chunks.sort(key=lambda r: r.metadata.chunk_index)
        parts.append(f"### From: [[{chunks[0].metadata.note_title}]]\n")
        for chunk in chunks:
            parts.append(f"{chunk.content}\n\n")
        parts.append("---\n\n")
    return "".join(parts)


def _clean_rewrite(text: str) -> str:
    line = text.strip().splitlines()[0].strip() if text.strip() else ""
    lowered = line.lower()
    for prefix in _REWRITE_PREFIXES:
        if lowered.startswith(prefix):
            line = line[len(prefix):].strip()
            break
    return line.strip("\"'` ").strip()


class RetrievalPipeline:
    """
    Turn a user query (plus conversation history) into RAG context.

    Args:
        store: Vector store to search
        pipeline: Embedding pipeline used for the query vector
        llm: Provider for query rewriting; None disables rewriting
        config: top_k, threshold and rewrite settings
    """

    def __init__(
        self,
        store: VectorStore,
        pipeline: EmbeddingPipeline,
        llm: Optional[LLMProvider] = None,
        config: Optional[RagConfig] = None,
    ):
        self._store = store
        self._pipeline = pipeline
        self._llm = llm
        self._config = config or RagConfig()

    def update(self, config: RagConfig) -> None:
        self._config = config

    def update_llm(self, llm: Optional[LLMProvider]) -> None:
        self._llm = llm

    def _rewrite_messages(self, query: str, history: Sequence[Message]) -> list[Message]:
        # One exchange is a user turn plus the assistant reply
        window = list(history)[-2 * self._config.history_turns:] if self._config.history_turns else []
        transcript = "\n".join(
            f"{m.role.capitalize()}: {m.content}" for m in window if m.role in ("user", "assistant")
        )
        prompt = (
            f"Conversation so far:\n{transcript}\n\n"
            f"Latest message: {query}\n\n"
            "Standalone search query:"
        )
        return [
            Message("system", REWRITE_SYSTEM_PROMPT),
            Message("user", prompt),
        ]

    async def rewrite_query(self, query: str, history: Optional[Sequence[Message]] = None) -> str:
        """
        Rewrite ``query`` into a standalone search query using ``history``.

        Returns ``query`` unchanged when there is no history, no LLM, or
        the rewrite fails or comes back empty.
        """
        if not history or self._llm is None or self._config.history_turns == 0:
            return query
        try:
            reply = await self._llm.complete(
                self._rewrite_messages(query, history),
                temperature=self._config.rewrite_temperature,
                max_tokens=self._config.rewrite_max_tokens,
            )
        except Exception as e:
            logger.warning("Query rewrite failed, using original query: %s", e)
            return query
        rewritten = _clean_rewrite(reply or "")
        if not rewritten:
            return query
        logger.debug("Rewrote query %r -> %r", query, rewritten)
        return rewritten

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        history: Optional[Sequence[Message]] = None,
    ) -> RAGContext:
        """
        Find the chunks most relevant to ``query`` and format them.

        Raises:
            ProviderError: If embedding the query fails
        """
        search_query = await self.rewrite_query(query, history)
        vector = await self._pipeline.embed(search_query)
        results = self._store.search(
            vector,
            top_k=self._config.top_k if top_k is None else top_k,
            similarity_threshold=(
                self._config.similarity_threshold if similarity_threshold is None
                else similarity_threshold
            ),
        )
        logger.debug("Retrieved %d chunks for %r", len(results), search_query)
        return RAGContext(
            query=query,
            chunks=results,
            formatted_context=format_context(results),
            rewritten_query=search_query if search_query != query else None,
        )
