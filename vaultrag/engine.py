"""
Incremental indexing engine.

Decides what to re-embed and keeps the vector store consistent with the
vault under edits, deletes and renames.

Per-note lifecycle:
    unknown -> indexed        first successful index records a content hash
    indexed -> dirty          a modification marks the note for deferred work
    dirty   -> indexed        flush_dirty() re-indexes changed content
    any     -> deleted        removal drops the hash and every chunk

Embedding only happens when a note's content hash changes. Old chunks are
replaced only after the new chunks have been embedded, so a failed
re-index leaves the previous chunks searchable.
"""

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .config import RagConfig
from .embeddings import EmbeddingPipeline
from .errors import DimensionMismatchError
from .hash_registry import ContentHashRegistry, content_hash
from .providers.base import DocumentSource
from .types import (
    ChangeEvent,
    ChangeKind,
    IndexOutcome,
    IndexReport,
    VectorDocument,
)
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]

# Queue sentinel that ends run()
_STOP: Any = object()


def is_excluded(path: str, excluded_folders: Iterable[str]) -> bool:
    """
    True if ``path`` starts with one of the excluded prefixes.

    Entries are plain string prefixes of the vault-relative path, so
    ``"Templates"`` also excludes ``"Templates2/x.md"``; write
    ``"Templates/"`` to exclude only that folder. Blank entries are ignored.
    """
    for prefix in excluded_folders:
        if prefix.strip() and path.startswith(prefix):
            return True
    return False


class _PathLock:
    """A per-note lock and the number of tasks holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class IndexingEngine:
    """
    Keeps the vector store and content-hash registry in step with the vault.

    Args:
        store: Vector store holding the chunks
        hashes: Content hashes of indexed notes
        pipeline: Chunking and embedding
        source: Where notes are read from (needed for index_all and events)
        config: Exclusions and auto-index switch
    """

    def __init__(
        self,
        store: VectorStore,
        hashes: ContentHashRegistry,
        pipeline: EmbeddingPipeline,
        source: Optional[DocumentSource] = None,
        config: Optional[RagConfig] = None,
    ):
        self._store = store
        self._hashes = hashes
        self._pipeline = pipeline
        self._source = source
        self._config = config or RagConfig()
        self._dirty: set[str] = set()
        self._path_locks: dict[str, _PathLock] = {}
        self._events: asyncio.Queue = asyncio.Queue()

    @property
    def config(self) -> RagConfig:
        return self._config

    def update(self, config: RagConfig) -> None:
        """Replace exclusion and auto-index settings."""
        self._config = config

    def is_eligible(self, path: str) -> bool:
        return not is_excluded(path, self._config.excluded_folders)

    @contextlib.asynccontextmanager
    async def _locked(self, path: str):
        """Serialize work on one note. The entry is dropped once nobody uses it."""
        entry = self._path_locks.get(path)
        if entry is None:
            entry = self._path_locks[path] = _PathLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._path_locks[path]

    # -------------------------------------------------------------------------
    # Single-note operations
    # -------------------------------------------------------------------------

    async def index_document(
        self,
        path: str,
        content: str,
        title: str,
        mtime: float = 0,
    ) -> IndexOutcome:
        """
        Bring one note's chunks up to date with ``content``.

        Raises:
            ProviderError: If embedding fails; the note's previous chunks remain
            DimensionMismatchError: If new vectors don't match the store's dimension
        """
        if not self.is_eligible(path):
            return IndexOutcome.EXCLUDED

        async with self._locked(path):
            new_hash = content_hash(content)
            if self._hashes.get(path) == new_hash:
                return IndexOutcome.UNCHANGED

            if not content.strip():
                removed = self._store.delete_documents_by_path(path)
                self._hashes.set(path, new_hash)
                logger.debug("Indexed empty note %s (removed %d stale chunks)", path, removed)
                return IndexOutcome.EMPTY

            chunks, embeddings = await self._pipeline.process_document(content, path, title)

            dimension = self._store.dimension
            others = self._store.get_count() - len(self._store.get_document_ids_by_path(path))
            if dimension is not None and others > 0 and embeddings and len(embeddings[0]) != dimension:
                raise DimensionMismatchError(dimension, len(embeddings[0]), path)

            docs = [VectorDocument.from_chunk(c, e, mtime) for c, e in zip(chunks, embeddings)]
            self._store.delete_documents_by_path(path)
            self._store.add_documents(docs)
            self._hashes.set(path, new_hash)

        logger.info("Indexed %s (%d chunks)", path, len(docs))
        return IndexOutcome.INDEXED

    async def remove_document(self, path: str) -> int:
        """
        Forget a note. Returns the number of chunks removed.

        Waits for any in-flight index of the same note, so a removal is
        never undone by an embedding that finishes after it.
        """
        async with self._locked(path):
            self._dirty.discard(path)
            self._hashes.remove(path)
            removed = self._store.delete_documents_by_path(path)
        if removed:
            logger.info("Removed %s (%d chunks)", path, removed)
        return removed

    async def rename_document(
        self,
        old_path: str,
        new_path: str,
        content: str,
        title: str,
        mtime: float = 0,
    ) -> IndexOutcome:
        """Remove the note under its old path, then index it under the new one."""
        await self.remove_document(old_path)
        return await self.index_document(new_path, content, title, mtime)

    # -------------------------------------------------------------------------
    # Bulk and deferred indexing
    # -------------------------------------------------------------------------

    def _require_source(self) -> DocumentSource:
        if self._source is None:
            raise RuntimeError("IndexingEngine has no document source")
        return self._source

    async def _read_and_index(self, path: str) -> IndexOutcome:
        doc = await asyncio.to_thread(self._require_source().read, path)
        return await self.index_document(path, doc.content, doc.title, doc.mtime)

    async def index_all(
        self,
        paths: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IndexReport:
        """
        Index every eligible note, one at a time.

        A failure on one note is logged and recorded in the report; the
        remaining notes are still indexed. ``on_progress(done, total)`` is
        called after each note.
        """
        if paths is None:
            paths = await asyncio.to_thread(self._require_source().list_documents)
        paths = list(paths)
        eligible = [p for p in paths if self.is_eligible(p)]

        report = IndexReport(total=len(eligible), excluded=len(paths) - len(eligible))
        logger.info("Indexing %d notes (%d excluded)", len(eligible), report.excluded)

        for done, path in enumerate(eligible, start=1):
            try:
                report.record(await self._read_and_index(path))
            except Exception as e:
                logger.error("Failed to index %s: %s", path, e)
                report.failed[path] = str(e)
            if on_progress is not None:
                result = on_progress(done, len(eligible))
                if inspect.isawaitable(result):
                    await result

        logger.info(
            "Indexing complete: %d indexed, %d unchanged, %d empty, %d failed",
            report.indexed, report.unchanged, report.empty, len(report.failed),
        )
        return report

    def mark_dirty(self, path: str) -> bool:
        """Record a modified note for the next flush. Returns True if recorded."""
        if not self._config.auto_index or not self.is_eligible(path):
            return False
        self._dirty.add(path)
        return True

    @property
    def dirty_paths(self) -> frozenset[str]:
        return frozenset(self._dirty)

    async def flush_dirty(self) -> IndexReport:
        """
        Re-index every note marked dirty.

        The dirty set is swapped out before any work starts, so edits that
        arrive during the flush land in a fresh set. Notes deleted since
        they were marked are skipped; notes that fail are marked dirty
        again for the next flush.
        """
        batch, self._dirty = self._dirty, set()
        report = IndexReport(total=len(batch))
        for path in sorted(batch):
            try:
                report.record(await self._read_and_index(path))
            except FileNotFoundError:
                logger.debug("Dirty note %s no longer exists", path)
            except Exception as e:
                logger.error("Failed to re-index %s: %s", path, e)
                report.failed[path] = str(e)
                self._dirty.add(path)
        return report

    # -------------------------------------------------------------------------
    # Change-event ingress
    # -------------------------------------------------------------------------

    def submit(self, event: ChangeEvent) -> None:
        """Queue a change event for processing in arrival order."""
        self._events.put_nowait(event)

    @property
    def pending_events(self) -> int:
        return self._events.qsize()

    async def handle_event(self, event: ChangeEvent) -> None:
        """
        Apply one change event.

        Removals are always applied. Creations, modifications and renames
        only index when auto-indexing is enabled.
        """
        kind = event.kind
        if kind is ChangeKind.DELETED:
            await self.remove_document(event.path)
        elif kind is ChangeKind.RENAMED:
            old_path = event.old_path or ""
            if not self._config.auto_index or not self.is_eligible(event.path):
                await self.remove_document(old_path)
                return
            doc = await asyncio.to_thread(self._require_source().read, event.path)
            await self.rename_document(old_path, event.path, doc.content, doc.title, doc.mtime)
        elif kind is ChangeKind.CREATED:
            if self._config.auto_index and self.is_eligible(event.path):
                await self._read_and_index(event.path)
        elif kind is ChangeKind.MODIFIED:
            self.mark_dirty(event.path)
        elif kind is ChangeKind.FOCUS_LEFT:
            await self.flush_dirty()

    async def _process(self, event: ChangeEvent) -> None:
        try:
            await self.handle_event(event)
        except Exception as e:
            logger.error("Failed to apply %s event for %s: %s", event.kind.value, event.path, e)

    async def drain(self) -> int:
        """Process every queued event. Returns how many were processed."""
        count = 0
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                return count
            if event is _STOP:
                return count
            await self._process(event)
            count += 1

    async def run(self) -> None:
        """Consume events until stop() is called."""
        while True:
            event = await self._events.get()
            if event is _STOP:
                return
            await self._process(event)

    def stop(self) -> None:
        """Ask run() to return after the events already queued."""
        self._events.put_nowait(_STOP)
