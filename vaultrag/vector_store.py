"""
In-memory vector store with a JSON snapshot on disk.

The store keeps every indexed chunk in memory with its vector and cached
norm, plus a secondary index from note path to chunk ids so that a note's
chunks can be replaced without scanning the corpus.

The snapshot file is the source of truth. Norms and the path index are
rebuilt on load and never persisted.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

import numpy as np

from .errors import DimensionMismatchError, StoreInitializationError
from .persistence import DebouncedWriter, read_json, write_json_atomic
from .topk import TopK
from .types import IndexedDocument, SearchResult, VectorDocument

logger = logging.getLogger(__name__)


SNAPSHOT_VERSION = "1.0"
DEFAULT_TOP_K = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.7

# Rounding slack for norms: |v|*|v| can differ from v.v in the last ulp
_UNIT_TOLERANCE = 1e-9


def _cosine(query: np.ndarray, query_norm: float, entry: IndexedDocument) -> float:
    """Cosine similarity using the cached candidate norm; zero vectors score 0."""
    if entry.norm == 0.0 or query_norm == 0.0:
        return 0.0
    similarity = float(np.dot(query, entry.vector)) / (query_norm * entry.norm)
    if similarity > 1.0 - _UNIT_TOLERANCE:
        return 1.0
    if similarity < -1.0 + _UNIT_TOLERANCE:
        return -1.0
    return similarity


class VectorStore:
    """
    Cosine-similarity search over embedded chunks.

    All mutation goes through the store's methods; callers receive copies
    (SearchResult, lists of ids), never references into the internal maps.

    Args:
        path: Snapshot file (e.g. ``<store>/vectors.json``)
        persist_delay: Debounce window for snapshot writes, in seconds
    """

    def __init__(self, path: Path, persist_delay: float = 1.0):
        self._path = Path(path)
        self._documents: dict[str, IndexedDocument] = {}
        self._path_index: dict[str, set[str]] = {}
        self._dimension: Optional[int] = None
        self._writer = DebouncedWriter(self._save, persist_delay, name=f"snapshot {self._path.name}")
        self._initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load the snapshot if present.

        A missing file means an empty store. A corrupt file raises
        StoreInitializationError rather than silently starting empty.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreInitializationError(
                f"Cannot create store directory {self._path.parent}: {e}"
            ) from e

        data = read_json(self._path)
        self._documents.clear()
        self._path_index.clear()
        self._dimension = None

        if data is None:
            logger.debug("No snapshot at %s, starting empty", self._path)
            self._initialized = True
            return

        if not isinstance(data, dict) or not isinstance(data.get("documents"), list):
            raise StoreInitializationError(f"Corrupt snapshot {self._path}: missing documents list")

        for i, raw in enumerate(data["documents"]):
            try:
                doc = VectorDocument.from_dict(raw)
            except (KeyError, ValueError, TypeError) as e:
                raise StoreInitializationError(
                    f"Corrupt snapshot {self._path}: document {i} is malformed: {e}"
                ) from e
            try:
                self._insert(IndexedDocument.from_document(doc))
            except DimensionMismatchError as e:
                raise StoreInitializationError(f"Corrupt snapshot {self._path}: {e}") from e

        self._initialized = True
        logger.info("Loaded %d chunks from %s", len(self._documents), self._path)

    def flush(self) -> bool:
        """Write any pending changes now. Returns True if a write happened."""
        return self._writer.flush()

    def close(self) -> None:
        """Flush pending changes."""
        self.flush()

    def set_persist_delay(self, delay: float) -> None:
        self._writer.delay = delay

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dirty(self) -> bool:
        return self._writer.dirty

    @property
    def dimension(self) -> Optional[int]:
        """Dimensionality shared by all stored vectors; None while empty."""
        return self._dimension

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_documents(self, docs: Iterable[VectorDocument]) -> None:
        """Insert or overwrite documents by id."""
        entries = [IndexedDocument.from_document(d) for d in docs]
        if not entries:
            return
        self._check_batch_dimension(entries)
        for entry in entries:
            self._remove(entry.id)
            self._insert(entry)
        self._writer.schedule()

    def update_documents(self, docs: Iterable[VectorDocument]) -> None:
        """Replace documents by id: delete, then insert."""
        entries = [IndexedDocument.from_document(d) for d in docs]
        if not entries:
            return
        self._check_batch_dimension(entries)
        for entry in entries:
            self._remove(entry.id)
        for entry in entries:
            self._insert(entry)
        self._writer.schedule()

    def delete_documents_by_path(self, path: str) -> int:
        """Remove every chunk of a note. Returns the number removed."""
        ids = self._path_index.get(path)
        if not ids:
            return 0
        removed = 0
        for doc_id in list(ids):
            if self._remove(doc_id):
                removed += 1
        if removed:
            self._writer.schedule()
        return removed

    def clear_all(self) -> None:
        """Remove every document."""
        self._documents.clear()
        self._path_index.clear()
        self._dimension = None
        self._writer.schedule()

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_document_ids_by_path(self, path: str) -> list[str]:
        """Current chunk ids for a note, sorted; empty if none."""
        return sorted(self._path_index.get(path, ()))

    def get(self, doc_id: str) -> Optional[VectorDocument]:
        """Stored document by id, or None."""
        entry = self._documents.get(doc_id)
        if entry is None:
            return None
        doc = entry.doc
        return VectorDocument(
            id=doc.id,
            content=doc.content,
            embedding=list(doc.embedding),
            metadata=doc.metadata,
        )

    def paths(self) -> list[str]:
        """Note paths with at least one chunk."""
        return sorted(self._path_index)

    def get_count(self) -> int:
        """Number of stored chunks."""
        return len(self._documents)

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._documents

    def search(
        self,
        query_vector,
        top_k: int = DEFAULT_TOP_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> list[SearchResult]:
        """
        Find the most similar chunks to a query vector.

        Candidates below ``similarity_threshold`` are skipped; the best
        ``top_k`` of the rest are kept in a bounded heap and returned in
        descending order of similarity.

        Raises:
            DimensionMismatchError: If the query length differs from the store's
        """
        query = np.asarray(query_vector, dtype=np.float64)
        if top_k <= 0 or not self._documents:
            return []
        if query.shape != (self._dimension,):
            raise DimensionMismatchError(self._dimension, int(query.size), "search query")
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        best: TopK[IndexedDocument] = TopK(top_k)
        for entry in self._documents.values():
            similarity = _cosine(query, query_norm, entry)
            if similarity < similarity_threshold:
                continue
            best.push(similarity, entry)

        return [
            SearchResult(
                id=entry.id,
                content=entry.doc.content,
                metadata=entry.doc.metadata,
                similarity=score,
            )
            for score, entry in best.results()
        ]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_batch_dimension(self, entries: list[IndexedDocument]) -> None:
        expected = self._dimension if self._dimension is not None else entries[0].vector.size
        for entry in entries:
            if entry.vector.size != expected:
                raise DimensionMismatchError(expected, int(entry.vector.size), entry.id)

    def _insert(self, entry: IndexedDocument) -> None:
        size = int(entry.vector.size)
        if self._dimension is None:
            self._dimension = size
        elif size != self._dimension:
            raise DimensionMismatchError(self._dimension, size, entry.id)
        self._documents[entry.id] = entry
        self._path_index.setdefault(entry.source_path, set()).add(entry.id)

    def _remove(self, doc_id: str) -> bool:
        entry = self._documents.pop(doc_id, None)
        if entry is None:
            return False
        bucket = self._path_index.get(entry.source_path)
        if bucket is not None:
            bucket.discard(doc_id)
            if not bucket:
                del self._path_index[entry.source_path]
        if not self._documents:
            self._dimension = None
        return True

    def _save(self) -> None:
        data = {
            "documents": [entry.doc.to_dict() for entry in self._documents.values()],
            "version": SNAPSHOT_VERSION,
        }
        write_json_atomic(self._path, data)
        logger.debug("Saved %d chunks to %s", len(self._documents), self._path)
