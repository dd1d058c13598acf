"""
Core API for indexing a vault and retrieving context from it.

VaultIndex wires the store, content hashes, embedding pipeline, indexing
engine and retrieval pipeline together from a store configuration, and is
what a chat layer or the CLI talks to.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from .config import (
    EmbeddingIdentity,
    RagConfig,
    StoreConfig,
    load_or_create_config,
    save_config,
)
from .embeddings import EmbeddingPipeline
from .engine import IndexingEngine, ProgressCallback
from .errors import NotInitializedError, StoreInitializationError
from .hash_registry import ContentHashRegistry
from .logging_config import configure_ops_log, remove_ops_log
from .providers.base import DocumentSource, EmbeddingProvider, LLMProvider, get_registry
from .providers.documents import VaultDocumentSource
from .retrieval import RetrievalPipeline
from .types import ChangeEvent, IndexOutcome, IndexReport, Message, RAGContext
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

STORE_DIRNAME = ".vaultrag"


def default_store_path(vault_path: Path) -> Path:
    """Store directory used when none is given: ``<vault>/.vaultrag``."""
    return Path(vault_path) / STORE_DIRNAME


class VaultIndex:
    """
    Semantic index over a vault of notes.

    Providers not passed explicitly are created from the store's
    ``vaultrag.toml``. Call ``initialize()`` (or use ``async with``) before
    anything else, and ``close()`` before exit so debounced writes land
    on disk.

    Args:
        vault_path: Root directory of the notes
        store_path: Directory for config, snapshot and hashes
            (default: ``<vault>/.vaultrag``)
        config: Store configuration to use instead of loading one
        rag_config: Indexing and retrieval settings overriding the stored ones
        embedding_provider: Embedding provider to use instead of the configured one
        llm_provider: LLM provider for query rewriting instead of the configured one
        source: Document source instead of reading ``vault_path`` from disk
    """

    def __init__(
        self,
        vault_path: Path | str,
        store_path: Optional[Path | str] = None,
        *,
        config: Optional[StoreConfig] = None,
        rag_config: Optional[RagConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        llm_provider: Optional[LLMProvider] = None,
        source: Optional[DocumentSource] = None,
    ):
        self._vault_path = Path(vault_path).expanduser().resolve()
        if store_path is not None:
            self._store_path = Path(store_path).expanduser().resolve()
        elif config is not None:
            self._store_path = config.path
        else:
            self._store_path = default_store_path(self._vault_path)

        self._config = config
        self._rag_override = rag_config
        self._embedding_provider = embedding_provider
        self._llm_provider = llm_provider
        self._source = source
        # Providers created here are closed here; injected ones belong to the caller
        self._owned_providers: list[Any] = []

        self._store: Optional[VectorStore] = None
        self._hashes: Optional[ContentHashRegistry] = None
        self._pipeline: Optional[EmbeddingPipeline] = None
        self._engine: Optional[IndexingEngine] = None
        self._retrieval: Optional[RetrievalPipeline] = None
        self._ops_handler: Optional[logging.Handler] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Load configuration and persisted state, and create providers.

        Raises:
            StoreInitializationError: If the store directory or files are unusable
        """
        try:
            self._store_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreInitializationError(f"Cannot create store directory {self._store_path}: {e}") from e

        if self._config is None:
            self._config = load_or_create_config(self._store_path)
        if self._rag_override is not None:
            self._config.rag = self._rag_override.validate()
        rag = self._config.rag

        self._ops_handler = configure_ops_log(self._store_path)

        registry = get_registry()
        if self._embedding_provider is None:
            self._embedding_provider = registry.create_embedding(
                self._config.embedding.name,
                self._config.embedding.params,
            )
            self._owned_providers.append(self._embedding_provider)
        if self._llm_provider is None and self._config.llm is not None:
            try:
                self._llm_provider = registry.create_llm(self._config.llm.name, self._config.llm.params)
                self._owned_providers.append(self._llm_provider)
            except (ValueError, RuntimeError) as e:
                logger.warning("LLM provider unavailable, queries will not be rewritten: %s", e)

        if self._source is None:
            self._source = VaultDocumentSource(self._vault_path)

        self._store = VectorStore(self._config.vectors_path, persist_delay=rag.persist_delay)
        self._store.initialize()
        self._hashes = ContentHashRegistry(self._config.hashes_path, persist_delay=rag.persist_delay)
        self._hashes.load()

        self._validate_embedding_identity()

        self._pipeline = EmbeddingPipeline(self._embedding_provider, rag)
        self._engine = IndexingEngine(self._store, self._hashes, self._pipeline, self._source, rag)
        self._retrieval = RetrievalPipeline(self._store, self._pipeline, self._llm_provider, rag)

        logger.info(
            "Opened index for %s at %s (%d chunks)",
            self._vault_path, self._store_path, self._store.get_count(),
        )

    async def close(self) -> None:
        """Write pending changes and release providers."""
        if self._store is not None:
            self._store.flush()
        if self._hashes is not None:
            self._hashes.flush()
        if self._store is not None:
            self._record_dimension()
        for provider in self._owned_providers:
            aclose = getattr(provider, "aclose", None)
            if aclose is not None:
                await aclose()
        self._owned_providers.clear()
        if self._ops_handler is not None:
            remove_ops_log(self._ops_handler)
            self._ops_handler = None

    async def __aenter__(self) -> "VaultIndex":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def flush(self) -> None:
        """Write pending store and hash changes now."""
        self._require_initialized()
        self._store.flush()
        self._hashes.flush()

    # -------------------------------------------------------------------------
    # Embedding identity
    # -------------------------------------------------------------------------

    def _current_identity(self) -> EmbeddingIdentity:
        dimension = self._store.dimension if self._store is not None else None
        return EmbeddingIdentity(
            provider=self._config.embedding.name,
            model=getattr(self._embedding_provider, "model_name", "unknown"),
            dimension=dimension or 0,
        )

    def _validate_embedding_identity(self) -> None:
        """
        Check that stored vectors came from the configured embedding model.

        On first use, records the identity. If the provider or model has
        changed, the old vectors are meaningless for new queries: the index
        and content hashes are cleared so everything is re-embedded on the
        next index_all().
        """
        current = self._current_identity()
        stored = self._config.embedding_identity

        if stored is None:
            logger.info("Recording embedding identity %s:%s", current.provider, current.model)
            self._config.embedding_identity = current
            save_config(self._config)
            return

        if (stored.provider, stored.model) != (current.provider, current.model):
            logger.warning(
                "Embedding model changed from %s:%s to %s:%s; clearing index for re-embedding",
                stored.provider, stored.model, current.provider, current.model,
            )
            self._store.clear_all()
            self._hashes.clear()
            self._store.flush()
            self._hashes.flush()
            current.dimension = 0
            self._config.embedding_identity = current
            save_config(self._config)

    def _record_dimension(self) -> None:
        """Store the index dimensionality in the identity once it is known."""
        identity = self._config.embedding_identity if self._config else None
        dimension = self._store.dimension
        if identity is None or dimension is None or identity.dimension == dimension:
            return
        identity.dimension = dimension
        save_config(self._config)

    # -------------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------------

    def _require_initialized(self) -> None:
        if self._engine is None:
            raise NotInitializedError("VaultIndex not initialized; call initialize() first")

    async def index_all(self, progress_callback: Optional[ProgressCallback] = None) -> IndexReport:
        """Index every eligible note in the vault, continuing past failures."""
        self._require_initialized()
        report = await self._engine.index_all(on_progress=progress_callback)
        self._record_dimension()
        return report

    async def index_document(self, path: str) -> IndexOutcome:
        """Read and index one note now."""
        self._require_initialized()
        doc = await asyncio.to_thread(self._source.read, path)
        return await self._engine.index_document(path, doc.content, doc.title, doc.mtime)

    def clear_index(self) -> None:
        """Remove every chunk and content hash; the next index_all re-embeds everything."""
        self._require_initialized()
        self._store.clear_all()
        self._hashes.clear()
        self._store.flush()
        self._hashes.flush()
        logger.info("Cleared index at %s", self._store_path)

    def get_index_stats(self) -> dict[str, Any]:
        """Chunk count, indexed note count and vector dimension."""
        self._require_initialized()
        return {
            "total_documents": self._store.get_count(),
            "indexed_files": len(self._store.paths()),
            "dimension": self._store.dimension,
        }

    def submit(self, event: ChangeEvent) -> None:
        """Queue a vault change for the indexing engine."""
        self._require_initialized()
        self._engine.submit(event)

    async def drain(self) -> int:
        """Apply all queued changes."""
        self._require_initialized()
        return await self._engine.drain()

    async def handle_event(self, event: ChangeEvent) -> None:
        """Apply one change immediately."""
        self._require_initialized()
        await self._engine.handle_event(event)

    async def flush_dirty(self) -> IndexReport:
        """Re-index notes modified since the last flush."""
        self._require_initialized()
        return await self._engine.flush_dirty()

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        history: Optional[Sequence[Message]] = None,
    ) -> RAGContext:
        """Retrieve context for a query, rewriting it first when history is given."""
        self._require_initialized()
        return await self._retrieval.retrieve(
            query,
            top_k=top_k,
            similarity_threshold=threshold,
            history=history,
        )

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def update_settings(
        self,
        excluded_folders: Optional[list[str]] = None,
        auto_index_enabled: Optional[bool] = None,
    ) -> RagConfig:
        """Change exclusions and the auto-index switch."""
        self._require_initialized()
        changes: dict[str, Any] = {}
        if excluded_folders is not None:
            changes["excluded_folders"] = list(excluded_folders)
        if auto_index_enabled is not None:
            changes["auto_index"] = bool(auto_index_enabled)
        return self.update_config(self._config.rag.with_changes(**changes))

    def update_config(self, rag: RagConfig) -> RagConfig:
        """Apply new settings to every component and save them."""
        self._require_initialized()
        rag.validate()
        self._config.rag = rag
        self._pipeline.update(rag)
        self._engine.update(rag)
        self._retrieval.update(rag)
        self._store.set_persist_delay(rag.persist_delay)
        self._hashes.set_persist_delay(rag.persist_delay)
        save_config(self._config)
        return rag

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def vault_path(self) -> Path:
        return self._vault_path

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> Optional[StoreConfig]:
        return self._config

    @property
    def source(self) -> Optional[DocumentSource]:
        return self._source

    @property
    def engine(self) -> IndexingEngine:
        self._require_initialized()
        return self._engine
