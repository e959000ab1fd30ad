"""Time-ordered request queue and retry backoff."""

import heapq
import itertools
import random
import time
from typing import Callable, Protocol

from ..models import RequestEntry


def calculate_backoff_delay(
    retry_attempt: int,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 60.0,
    jitter_factor: float = 0.1,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds before retry number ``retry_attempt`` (0-based).

    base * multiplier**attempt, perturbed by up to +/- jitter_factor of
    itself, then capped at max_delay.
    """
    exponential = base_delay * (multiplier**retry_attempt)
    jitter = exponential * jitter_factor * (rand() * 2 - 1)
    return max(0.0, min(exponential + jitter, max_delay))


class IRequestQueue(Protocol):
    """Pending requests ordered by earliest execution time."""

    def push(self, entry: RequestEntry) -> None:
        """Add an entry."""
        ...

    def pop_due(self, now: float | None = None) -> RequestEntry | None:
        """Remove and return the head entry if it is due."""
        ...


class RequestQueue:
    """Min-heap of entries keyed by (earliest_execute, insertion order)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: list[tuple[float, int, RequestEntry]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, entry: RequestEntry) -> None:
        """Add an entry."""
        heapq.heappush(self._heap, (entry.earliest_execute, next(self._counter), entry))

    def peek(self) -> RequestEntry | None:
        return self._heap[0][2] if self._heap else None

    def pop_due(self, now: float | None = None) -> RequestEntry | None:
        """Remove and return the head entry if it is due."""
        if not self._heap:
            return None
        now = self.now() if now is None else now
        if self._heap[0][0] > now:
            return None
        return heapq.heappop(self._heap)[2]

    def entries(self) -> list[RequestEntry]:
        """Pending entries in dispatch order."""
        return [item[2] for item in sorted(self._heap)]

    def clear(self) -> int:
        """Drop every pending entry, cancelling their futures."""
        dropped = len(self._heap)
        for _, _, entry in self._heap:
            if not entry.future.done():
                entry.future.cancel()
        self._heap.clear()
        return dropped
