"""
Content-hash registry.

Maps each note path to a short hash of the content that produced its
currently stored chunks. Absence of an entry means the note was never
successfully indexed. Persisted as a flat JSON object, debounced
independently of the vector snapshot.
"""

import hashlib
import logging
from pathlib import Path
from typing import Iterator, Optional

from .errors import StoreInitializationError
from .persistence import DebouncedWriter, read_json, write_json_atomic

logger = logging.getLogger(__name__)


def content_hash(content: str) -> str:
    """Short SHA256 hash of content for change detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[-10:]


class ContentHashRegistry:
    """Path to content-hash map with debounced persistence."""

    def __init__(self, path: Path, persist_delay: float = 1.0):
        self._path = Path(path)
        self._hashes: dict[str, str] = {}
        self._writer = DebouncedWriter(self._save, persist_delay, name=f"hashes {self._path.name}")

    def load(self) -> None:
        """
        Load the registry file. A missing file means an empty registry.

        Raises:
            StoreInitializationError: If the file is corrupt
        """
        data = read_json(self._path)
        if data is None:
            self._hashes = {}
            return
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise StoreInitializationError(
                f"Corrupt content-hash registry {self._path}: expected an object of strings"
            )
        self._hashes = dict(data)
        logger.debug("Loaded %d content hashes from %s", len(self._hashes), self._path)

    def get(self, path: str) -> Optional[str]:
        return self._hashes.get(path)

    def set(self, path: str, value: str) -> None:
        if self._hashes.get(path) == value:
            return
        self._hashes[path] = value
        self._writer.schedule()

    def remove(self, path: str) -> bool:
        """Forget a path. Returns True if it was present."""
        if self._hashes.pop(path, None) is None:
            return False
        self._writer.schedule()
        return True

    def clear(self) -> None:
        self._hashes.clear()
        self._writer.schedule()

    def paths(self) -> list[str]:
        return sorted(self._hashes)

    def flush(self) -> bool:
        """Write any pending changes now."""
        return self._writer.flush()

    def set_persist_delay(self, delay: float) -> None:
        self._writer.delay = delay

    def __contains__(self, path: str) -> bool:
        return path in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._hashes))

    def _save(self) -> None:
        write_json_atomic(self._path, self._hashes)
