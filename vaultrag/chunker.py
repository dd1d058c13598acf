"""
Split note text into overlapping word windows.
"""

from .types import Chunk


def chunk_document(
    content: str,
    source_path: str,
    note_title: str,
    chunk_size: int = 200,
    overlap: int = 30,
) -> list[Chunk]:
    """
    Split content on whitespace into windows of ``chunk_size`` words.

    Consecutive windows share ``overlap`` words. The last window may be
    shorter. If ``overlap >= chunk_size`` the first window is followed by
    a single window covering the rest of the text, instead of never
    advancing.

    Args:
        content: Note text
        source_path: Path of the owning note
        note_title: Display title of the owning note
        chunk_size: Words per chunk
        overlap: Words shared between consecutive chunks

    Returns:
        Chunks in order; empty for empty or whitespace-only content
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    overlap = max(overlap, 0)

    words = content.split()
    if not words:
        return []

    windows: list[str] = []
    step = chunk_size - overlap
    start = 0
    while start < len(words):
        end = min(start + chunk_size, len(words))
        windows.append(" ".join(words[start:end]))
        if end >= len(words):
            break
        if step <= 0:
            # Degenerate settings: emit the remainder as one final chunk
            windows.append(" ".join(words[end:]))
            break
        start += step

    total = len(windows)
    return [
        Chunk(
            content=text,
            source_path=source_path,
            chunk_index=i,
            total_chunks=total,
            note_title=note_title,
        )
        for i, text in enumerate(windows)
    ]
