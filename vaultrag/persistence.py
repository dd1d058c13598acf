"""
Snapshot files and debounced writes.

Both persisted stores (the vector snapshot and the content-hash registry)
are whole-file JSON documents. Every write replaces the file atomically,
so a crash loses at most the mutations made since the last write and
never leaves a truncated file behind.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import StoreInitializationError

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write compact JSON to ``path`` via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, separators=(",", ":"), ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def read_json(path: Path) -> Optional[Any]:
    """
    Read a JSON file written by :func:`write_json_atomic`.

    Returns None if the file does not exist.

    Raises:
        StoreInitializationError: If the file is unreadable or not valid JSON
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise StoreInitializationError(f"Corrupt store file {path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise StoreInitializationError(f"Cannot read store file {path}: {e}") from e


class DebouncedWriter:
    """
    Coalesce bursts of mutations into a single deferred write.

    Each ``schedule()`` marks the owner dirty and re-arms a timer on the
    running event loop, so the write happens ``delay`` seconds after the
    last mutation. Without a running loop nothing is armed and the data
    stays dirty until ``flush()``.

    ``flush()`` cancels any pending timer and writes synchronously. Owners
    must call it before shutdown; otherwise mutations from the final
    ``delay`` seconds are lost.
    """

    def __init__(self, write_fn: Callable[[], None], delay: float = 1.0, name: str = ""):
        self._write_fn = write_fn
        self._delay = delay
        self._name = name or getattr(write_fn, "__qualname__", "writer")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._dirty = False

    @property
    def delay(self) -> float:
        return self._delay

    @delay.setter
    def delay(self, value: float) -> None:
        self._delay = max(float(value), 0.0)

    @property
    def dirty(self) -> bool:
        """True if there are mutations not yet written."""
        return self._dirty

    @property
    def pending(self) -> bool:
        """True if a timer is armed."""
        return self._handle is not None

    def schedule(self) -> None:
        """Mark dirty and (re)start the debounce timer."""
        self._dirty = True
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Drop the pending timer, if any. Dirty state is kept."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """
        Write now if dirty. Returns True if a write happened.

        Write errors propagate; the writer stays dirty so a later flush retries.
        """
        self.cancel()
        if not self._dirty:
            return False
        self._write_fn()
        self._dirty = False
        return True

    def _fire(self) -> None:
        self._handle = None
        try:
            self.flush()
        except OSError as e:
            logger.error("Deferred write for %s failed: %s", self._name, e)
