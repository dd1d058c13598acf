"""
Document source for a vault of markdown notes on the local filesystem.
"""

import logging
from pathlib import Path

from ..types import ChangeEvent, ChangeKind, SourceDocument

logger = logging.getLogger(__name__)


class VaultDocumentSource:
    """
    Reads notes from a vault directory.

    Paths are vault-relative with ``/`` separators (``Projects/plan.md``).
    Hidden directories (``.git``, ``.obsidian``, ...) are never listed.

    Also supports polling for changes: ``scan_changes()`` compares the
    vault against the previous scan and reports created, modified, deleted
    and renamed notes.
    """

    # Default max note size: 10MB
    MAX_FILE_SIZE = 10_000_000

    def __init__(
        self,
        root: Path | str,
        extensions: tuple[str, ...] = (".md",),
        max_size: int | None = None,
    ):
        self.root = Path(root).expanduser().resolve()
        self.extensions = tuple(e.lower() for e in extensions)
        self.max_size = max_size or self.MAX_FILE_SIZE
        # path -> (mtime_ns, size) as of the last scan; None until first scan
        self._snapshot: dict[str, tuple[int, int]] | None = None

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root):
            raise ValueError(f"Path escapes the vault: {path}")
        return full

    def _relative(self, full: Path) -> str:
        return full.relative_to(self.root).as_posix()

    def _is_note(self, full: Path) -> bool:
        return full.suffix.lower() in self.extensions

    def read(self, path: str) -> SourceDocument:
        """
        Read a note.

        Raises:
            FileNotFoundError: If the note doesn't exist
            IOError: If the note is too large
        """
        full = self._resolve(path)
        if not full.is_file():
            raise FileNotFoundError(f"Note not found: {path}")
        stat = full.stat()
        if stat.st_size > self.max_size:
            raise IOError(
                f"Note too large: {stat.st_size:,} bytes (limit: {self.max_size:,} bytes)"
            )
        content = full.read_text(encoding="utf-8", errors="replace")
        return SourceDocument(
            path=path,
            content=content,
            title=full.stem,
            mtime=stat.st_mtime_ns / 1_000_000,
        )

    def list_documents(self) -> list[str]:
        """All note paths in the vault, sorted."""
        return sorted(self._stat_all())

    def _stat_all(self) -> dict[str, tuple[int, int]]:
        found: dict[str, tuple[int, int]] = {}
        if not self.root.is_dir():
            return found
        for full in self.root.rglob("*"):
            rel = full.relative_to(self.root)
            if any(part.startswith(".") for part in rel.parts[:-1]):
                continue
            if full.is_symlink() or not full.is_file() or not self._is_note(full):
                continue
            try:
                stat = full.stat()
            except OSError as e:
                logger.debug("Skipping %s: %s", rel, e)
                continue
            found[rel.as_posix()] = (stat.st_mtime_ns, stat.st_size)
        return found

    def scan_changes(self) -> list[ChangeEvent]:
        """
        Report what changed since the previous call.

        The first call only records the current state and returns nothing.
        A deleted note and a created note with the same size and
        modification time are reported as one rename.
        """
        current = self._stat_all()
        previous = self._snapshot
        self._snapshot = current
        if previous is None:
            return []

        created = [p for p in current if p not in previous]
        deleted = [p for p in previous if p not in current]
        modified = [p for p in current if p in previous and current[p] != previous[p]]

        events: list[ChangeEvent] = []

        by_stat: dict[tuple[int, int], list[str]] = {}
        for p in deleted:
            by_stat.setdefault(previous[p], []).append(p)
        for p in sorted(created):
            candidates = by_stat.get(current[p])
            if candidates and len(candidates) == 1:
                old = candidates.pop()
                deleted.remove(old)
                events.append(ChangeEvent(ChangeKind.RENAMED, p, old_path=old,
                                          mtime=current[p][0] / 1_000_000))
            else:
                events.append(ChangeEvent(ChangeKind.CREATED, p, mtime=current[p][0] / 1_000_000))

        for p in sorted(modified):
            events.append(ChangeEvent(ChangeKind.MODIFIED, p, mtime=current[p][0] / 1_000_000))
        for p in sorted(deleted):
            events.append(ChangeEvent(ChangeKind.DELETED, p))

        if events:
            logger.debug("Detected %d change(s) in %s", len(events), self.root)
        return events
