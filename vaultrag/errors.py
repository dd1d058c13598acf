"""
Error types and error logging for vaultrag.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class VaultRagError(Exception):
    """Base class for vaultrag errors."""


class StoreInitializationError(VaultRagError, OSError):
    """
    A persisted store file could not be loaded.

    Raised for corrupt JSON, unreadable files or an uncreatable store
    directory. A missing file is not an error; it means an empty store.
    """


class ProviderError(VaultRagError):
    """An embedding or LLM provider call failed."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class DimensionMismatchError(VaultRagError, ValueError):
    """A vector's length differs from the store's dimensionality."""

    def __init__(self, expected: int, actual: int, context: str = ""):
        msg = f"Embedding dimension mismatch: expected {expected}, got {actual}"
        if context:
            msg += f" ({context})"
        super().__init__(msg)
        self.expected = expected
        self.actual = actual


class NotInitializedError(VaultRagError, RuntimeError):
    """The index was used before initialize() completed."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting VAULTRAG_STORE_PATH."""
    store = os.environ.get("VAULTRAG_STORE_PATH")
    if store:
        return Path(store) / "vaultrag-errors.log"
    return Path.home() / ".vaultrag" / "vaultrag-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}] {type(exc).__name__}")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # the error log is best-effort; the caller still reports exc
    return log_path
