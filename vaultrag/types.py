"""
Data types for vault indexing and retrieval.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


# Separator between a note path and its chunk position in stored ids
CHUNK_ID_SEPARATOR = "::chunk::"


def chunk_id(source_path: str, chunk_index: int) -> str:
    """Stored id for a chunk: ``{path}::chunk::{index}``."""
    return f"{source_path}{CHUNK_ID_SEPARATOR}{chunk_index}"


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous slice of a note's word stream.

    Chunks are created fresh on every re-index and never mutated; a changed
    note supersedes all of its chunks at once.
    """
    content: str
    source_path: str
    chunk_index: int
    total_chunks: int
    note_title: str

    @property
    def id(self) -> str:
        return chunk_id(self.source_path, self.chunk_index)


@dataclass(frozen=True)
class ChunkMetadata:
    """Per-chunk metadata, persisted as the ``metadata`` object of a snapshot entry."""
    file_path: str
    chunk_index: int
    total_chunks: int
    note_title: str
    timestamp: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "chunkIndex": self.chunk_index,
            "totalChunks": self.total_chunks,
            "noteTitle": self.note_title,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChunkMetadata":
        return cls(
            file_path=str(data["filePath"]),
            chunk_index=int(data["chunkIndex"]),
            total_chunks=int(data["totalChunks"]),
            note_title=str(data.get("noteTitle", "")),
            timestamp=data.get("timestamp", 0),
        )


@dataclass
class VectorDocument:
    """
    A chunk together with its embedding, in the form that is persisted.

    Attributes:
        id: Chunk id, see :func:`chunk_id`
        content: Chunk text
        embedding: Embedding vector as a plain list of floats
        metadata: Source note path, position and title
    """
    id: str
    content: str
    embedding: list[float]
    metadata: ChunkMetadata

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: list[float], timestamp: float = 0) -> "VectorDocument":
        return cls(
            id=chunk.id,
            content=chunk.content,
            embedding=list(embedding),
            metadata=ChunkMetadata(
                file_path=chunk.source_path,
                chunk_index=chunk.chunk_index,
                total_chunks=chunk.total_chunks,
                note_title=chunk.note_title,
                timestamp=timestamp,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": self.embedding,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VectorDocument":
        """Decode one snapshot entry. Raises KeyError/ValueError/TypeError if malformed."""
        embedding = data["embedding"]
        if not isinstance(embedding, list):
            raise ValueError(f"Embedding for {data.get('id')!r} is not a list")
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            embedding=[float(x) for x in embedding],
            metadata=ChunkMetadata.from_dict(data["metadata"]),
        )


@dataclass
class IndexedDocument:
    """
    Searchable in-memory form of a stored chunk.

    The vector is held as a float64 array with its L2 norm cached, so a
    search never recomputes candidate norms. The source path is fixed at
    insertion; it keys the store's path index. Owned by the vector store.
    """
    doc: VectorDocument
    vector: np.ndarray
    norm: float
    source_path: str

    @classmethod
    def from_document(cls, doc: VectorDocument) -> "IndexedDocument":
        vector = np.array(doc.embedding, dtype=np.float64)
        owned = VectorDocument(
            id=doc.id,
            content=doc.content,
            embedding=list(doc.embedding),
            metadata=doc.metadata,
        )
        return cls(
            doc=owned,
            vector=vector,
            norm=float(np.linalg.norm(vector)),
            source_path=doc.metadata.file_path,
        )

    @property
    def id(self) -> str:
        return self.doc.id


@dataclass
class SearchResult:
    """A stored chunk returned by a similarity search."""
    id: str
    content: str
    metadata: ChunkMetadata
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
            "similarity": self.similarity,
        }


@dataclass
class RAGContext:
    """Result of a retrieval: the chunks found and their formatted context."""
    query: str
    chunks: list[SearchResult] = field(default_factory=list)
    formatted_context: str = ""
    rewritten_query: Optional[str] = None

    @property
    def search_query(self) -> str:
        """The query that was actually embedded."""
        return self.rewritten_query or self.query

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "rewritten_query": self.rewritten_query,
            "chunks": [c.to_dict() for c in self.chunks],
            "formatted_context": self.formatted_context,
        }


@dataclass
class Message:
    """A conversation turn passed to an LLM provider."""
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChangeKind(enum.Enum):
    """Kinds of note lifecycle events the indexing engine consumes."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    # The user moved focus away from the note being edited
    FOCUS_LEFT = "focus_left"


@dataclass(frozen=True)
class ChangeEvent:
    """A typed change notification from the document source."""
    kind: ChangeKind
    path: str = ""
    old_path: Optional[str] = None
    mtime: Optional[float] = None


@dataclass
class SourceDocument:
    """A note read from the document source."""
    path: str
    content: str
    title: str
    mtime: float = 0


class IndexOutcome(enum.Enum):
    """What happened when a single note was offered for indexing."""
    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    EMPTY = "empty"
    EXCLUDED = "excluded"


@dataclass
class IndexReport:
    """Summary of a bulk indexing run."""
    total: int = 0
    indexed: int = 0
    unchanged: int = 0
    empty: int = 0
    excluded: int = 0
    failed: dict[str, str] = field(default_factory=dict)

    def record(self, outcome: IndexOutcome) -> None:
        if outcome is IndexOutcome.INDEXED:
            self.indexed += 1
        elif outcome is IndexOutcome.UNCHANGED:
            self.unchanged += 1
        elif outcome is IndexOutcome.EMPTY:
            self.empty += 1
        elif outcome is IndexOutcome.EXCLUDED:
            self.excluded += 1

    @property
    def processed(self) -> int:
        return self.indexed + self.unchanged + self.empty + self.excluded + len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "indexed": self.indexed,
            "unchanged": self.unchanged,
            "empty": self.empty,
            "excluded": self.excluded,
            "failed": dict(self.failed),
        }
