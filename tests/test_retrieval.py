"""
Tests for query rewriting, retrieval and context formatting.
"""

import pytest
import pytest_asyncio

from vaultrag.embeddings import EmbeddingPipeline
from vaultrag.errors import ProviderError
from vaultrag.retrieval import CONTEXT_HEADER, RetrievalPipeline, format_context
from vaultrag.types import ChunkMetadata, Message, SearchResult, VectorDocument

from conftest import FailingEmbeddingProvider, MockLLMProvider


def result(path: str, index: int, content: str, similarity: float, title: str | None = None):
    return SearchResult(
        id=f"{path}::chunk::{index}",
        content=content,
        metadata=ChunkMetadata(path, index, 3, title or path.split("/")[-1].removesuffix(".md")),
        similarity=similarity,
    )


HISTORY = [
    Message("user", "What did I plant last spring?"),
    Message("assistant", "Tomatoes and basil."),
]


class TestFormatContext:

    def test_empty(self):
        assert format_context([]) == ""

    def test_single_chunk_exact_format(self):
        text = format_context([result("notes/garden.md", 0, "Tomatoes need sun.", 0.9)])
        assert text == (
            "Here are relevant excerpts from your notes:\n\n"
            "### From: [[garden]]\n"
            "Tomatoes need sun.\n\n"
            "---\n\n"
        )

    def test_groups_by_note_in_best_match_order(self):
        text = format_context([
            result("b.md", 2, "b-two", 0.95),
            result("a.md", 0, "a-zero", 0.9),
            result("b.md", 0, "b-zero", 0.8),
        ])
        assert text.startswith(CONTEXT_HEADER)
        assert text.index("[[b]]") < text.index("[[a]]")
        # Reading order within a note
        assert text.index("b-zero") < text.index("b-two")
        assert text.count("### From:") == 2
        assert text.count("---\n\n") == 2


class TestRewriteQuery:

    @pytest.fixture
    def pipeline(self, store, mock_embedding_provider, rag_config):
        return EmbeddingPipeline(mock_embedding_provider, rag_config)

    @pytest.mark.asyncio
    async def test_no_history_means_no_llm_call(self, store, pipeline, mock_llm, rag_config):
        retrieval = RetrievalPipeline(store, pipeline, mock_llm, rag_config)
        assert await retrieval.rewrite_query("garden plans") == "garden plans"
        assert mock_llm.calls == []

    @pytest.mark.asyncio
    async def test_rewrite_uses_deterministic_settings(self, store, pipeline, rag_config):
        llm = MockLLMProvider(reply="plants grown in spring garden")
        retrieval = RetrievalPipeline(store, pipeline, llm, rag_config)

        rewritten = await retrieval.rewrite_query("which of those grew best?", HISTORY)
        assert rewritten == "plants grown in spring garden"
        call = llm.calls[0]
        assert call["temperature"] == 0.0
        assert call["max_tokens"] == 100
        prompt = call["messages"][-1].content
        assert "User: What did I plant last spring?" in prompt
        assert "Assistant: Tomatoes and basil." in prompt
        assert "which of those grew best?" in prompt

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back(self, store, pipeline, rag_config):
        retrieval = RetrievalPipeline(store, pipeline, MockLLMProvider(fail=True), rag_config)
        assert await retrieval.rewrite_query("follow up", HISTORY) == "follow up"

    @pytest.mark.asyncio
    async def test_empty_reply_falls_back(self, store, pipeline, rag_config):
        retrieval = RetrievalPipeline(store, pipeline, MockLLMProvider(reply="  \n"), rag_config)
        assert await retrieval.rewrite_query("follow up", HISTORY) == "follow up"

    @pytest.mark.asyncio
    async def test_reply_is_cleaned(self, store, pipeline, rag_config):
        llm = MockLLMProvider(reply='Query: "spring garden harvest"\nBecause the user asked...')
        retrieval = RetrievalPipeline(store, pipeline, llm, rag_config)
        assert await retrieval.rewrite_query("and then?", HISTORY) == "spring garden harvest"

    @pytest.mark.asyncio
    async def test_history_window(self, store, pipeline, rag_config):
        llm = MockLLMProvider()
        history = [Message("user", f"turn {i}") for i in range(10)]
        retrieval = RetrievalPipeline(store, pipeline, llm, rag_config.with_changes(history_turns=1))
        await retrieval.rewrite_query("latest", history)
        prompt = llm.calls[0]["messages"][-1].content
        assert "turn 9" in prompt and "turn 8" in prompt
        assert "turn 7" not in prompt

    @pytest.mark.asyncio
    async def test_no_llm_configured(self, store, pipeline, rag_config):
        retrieval = RetrievalPipeline(store, pipeline, None, rag_config)
        assert await retrieval.rewrite_query("follow up", HISTORY) == "follow up"


class TestRetrieve:

    @pytest_asyncio.fixture
    async def indexed(self, store, mock_embedding_provider, rag_config):
        """Store holding three single-chunk notes embedded with the mock provider."""
        notes = {
            "notes/garden.md": "tomatoes basil",
            "notes/travel.md": "trains alps",
            "notes/food.md": "pasta sauce",
        }
        for path, content in notes.items():
            vec = await mock_embedding_provider.embed(content)
            store.add_documents([VectorDocument(
                id=f"{path}::chunk::0",
                content=content,
                embedding=vec,
                metadata=ChunkMetadata(path, 0, 1, path.split("/")[-1][:-3]),
            )])
        return store

    @pytest.mark.asyncio
    async def test_exact_text_match_ranks_first(self, indexed, mock_embedding_provider, rag_config):
        pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
        retrieval = RetrievalPipeline(indexed, pipeline, None, rag_config)
        ctx = await retrieval.retrieve("trains alps", top_k=3, similarity_threshold=0.0)

        assert ctx.chunks[0].metadata.file_path == "notes/travel.md"
        assert ctx.chunks[0].similarity == 1.0
        assert ctx.rewritten_query is None
        assert ctx.search_query == "trains alps"
        assert ctx.formatted_context.startswith(CONTEXT_HEADER)

    @pytest.mark.asyncio
    async def test_threshold_one_returns_only_exact(self, indexed, mock_embedding_provider, rag_config):
        pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
        retrieval = RetrievalPipeline(indexed, pipeline, None, rag_config)
        ctx = await retrieval.retrieve("pasta sauce", top_k=5, similarity_threshold=1.0)
        assert [c.metadata.file_path for c in ctx.chunks] == ["notes/food.md"]

    @pytest.mark.asyncio
    async def test_top_k_limits(self, indexed, mock_embedding_provider, rag_config):
        pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
        retrieval = RetrievalPipeline(indexed, pipeline, None, rag_config)
        ctx = await retrieval.retrieve("anything", top_k=2, similarity_threshold=-1.0)
        assert len(ctx.chunks) == 2

    @pytest.mark.asyncio
    async def test_rewritten_query_is_embedded(self, indexed, mock_embedding_provider, rag_config):
        pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
        llm = MockLLMProvider(reply="tomatoes basil")
        retrieval = RetrievalPipeline(indexed, pipeline, llm, rag_config)

        ctx = await retrieval.retrieve("what about those?", history=HISTORY,
                                       top_k=1, similarity_threshold=0.0)
        assert ctx.query == "what about those?"
        assert ctx.rewritten_query == "tomatoes basil"
        assert mock_embedding_provider.texts[-1] == "tomatoes basil"
        assert ctx.chunks[0].metadata.file_path == "notes/garden.md"

    @pytest.mark.asyncio
    async def test_empty_store(self, store, mock_embedding_provider, rag_config):
        pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
        ctx = await RetrievalPipeline(store, pipeline, None, rag_config).retrieve("x")
        assert ctx.chunks == []
        assert ctx.formatted_context == ""

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, store, rag_config):
        pipeline = EmbeddingPipeline(FailingEmbeddingProvider(), rag_config)
        with pytest.raises(ProviderError):
            await RetrievalPipeline(store, pipeline, None, rag_config).retrieve("x")

    @pytest.mark.asyncio
    async def test_config_defaults_apply(self, indexed, mock_embedding_provider, rag_config):
        pipeline = EmbeddingPipeline(mock_embedding_provider, rag_config)
        retrieval = RetrievalPipeline(indexed, pipeline, None, rag_config.with_changes(top_k=1,
                                                                                       similarity_threshold=-1.0))
        ctx = await retrieval.retrieve("anything")
        assert len(ctx.chunks) == 1
