"""
vaultrag - semantic search and retrieval context over a notes vault.

Indexes markdown notes into an embedded vector store and assembles
retrieved excerpts into model-ready context.

Example:
    async with VaultIndex("~/notes") as index:
        await index.index_all()
        ctx = await index.retrieve("what did I decide about the roadmap?")
        print(ctx.formatted_context)
"""

from .api import VaultIndex
from .config import RagConfig, StoreConfig, ProviderConfig
from .errors import (
    VaultRagError,
    StoreInitializationError,
    ProviderError,
    DimensionMismatchError,
    NotInitializedError,
)
from .types import (
    Chunk,
    ChangeEvent,
    ChangeKind,
    IndexReport,
    Message,
    RAGContext,
    SearchResult,
)

__version__ = "0.3.0"
__all__ = [
    "VaultIndex",
    "RagConfig",
    "StoreConfig",
    "ProviderConfig",
    "VaultRagError",
    "StoreInitializationError",
    "ProviderError",
    "DimensionMismatchError",
    "NotInitializedError",
    "Chunk",
    "ChangeEvent",
    "ChangeKind",
    "IndexReport",
    "Message",
    "RAGContext",
    "SearchResult",
]
