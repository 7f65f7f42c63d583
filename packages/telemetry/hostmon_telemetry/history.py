"""Fixed-capacity rolling history of scalar samples."""

from __future__ import annotations

from collections import deque

HISTORY_SIZE = 60


class HistoryBuffer:
    """Oldest-first ring of floats that always holds exactly ``capacity`` values.

    The buffer starts zero-filled. Each append evicts the oldest sample, so the
    length never changes over the lifetime of the owning sampler.
    """

    def __init__(self, capacity: int = HISTORY_SIZE) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be at least 1")
        self._capacity = int(capacity)
        self._ring: deque[float] = deque([0.0] * self._capacity, maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._ring)

    def append(self, value: float) -> None:
        self._ring.append(float(value))

    @property
    def latest(self) -> float:
        return self._ring[-1]

    def values(self) -> tuple[float, ...]:
        return tuple(self._ring)
