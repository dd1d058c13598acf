"""
Bounded top-K selection.

A min-heap of at most ``k`` entries keyed by score. Pushing a candidate
costs O(log k), so selecting the best k of n scores is O(n log k) without
sorting the whole candidate set.
"""

import heapq
import itertools
from typing import Generic, TypeVar

T = TypeVar("T")


class TopK(Generic[T]):
    """
    Keep the ``k`` highest-scoring payloads seen so far.

    Payloads are opaque: they are never compared, so ties on score are
    broken by insertion order (earlier wins).

    Example:
        best = TopK[str](2)
        for score, name in [(0.3, "a"), (0.9, "b"), (0.5, "c")]:
            best.push(score, name)
        best.results()  # [(0.9, "b"), (0.5, "c")]
    """

    def __init__(self, k: int):
        self._k = max(int(k), 0)
        # (score, -seq, payload): on equal score the later entry is the smaller
        self._heap: list[tuple[float, int, T]] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def k(self) -> int:
        return self._k

    def min_score(self) -> float | None:
        """Lowest score currently kept, or None when empty."""
        return self._heap[0][0] if self._heap else None

    def push(self, score: float, payload: T) -> bool:
        """
        Offer a candidate. Returns True if it was kept.

        When full, the current minimum is replaced only by a strictly
        greater score.
        """
        if self._k == 0:
            return False
        entry = (score, -next(self._seq), payload)
        if len(self._heap) < self._k:
            heapq.heappush(self._heap, entry)
            return True
        if score > self._heap[0][0]:
            heapq.heapreplace(self._heap, entry)
            return True
        return False

    def results(self) -> list[tuple[float, T]]:
        """Kept entries, highest score first."""
        ordered = sorted(self._heap, key=lambda e: (e[0], e[1]), reverse=True)
        return [(score, payload) for score, _, payload in ordered]
