"""In-memory fixed-window request counters."""

from __future__ import annotations

import threading
import time
from typing import Callable

# Window name -> length in seconds
WINDOWS = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

# Expired windows are pruned at most this often
PRUNE_INTERVAL_SECONDS = 60


class FixedWindowCounter:
    """
    Per-key counters for aligned minute, hour and day windows.

    A window starts at the epoch-aligned boundary, so a request at 12:00:59
    and one at 12:01:00 fall into different minute windows.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: dict[tuple[str, str, int], int] = {}
        self._last_prune = clock()

    def increment(self, key: str) -> dict[str, int]:
        """Count one hit for key in every window and return the new counts."""
        now = self._clock()
        with self._lock:
            counts = {}
            for window, length in WINDOWS.items():
                bucket = (key, window, int(now // length))
                self._counts[bucket] = self._counts.get(bucket, 0) + 1
                counts[window] = self._counts[bucket]
            if now - self._last_prune >= PRUNE_INTERVAL_SECONDS:
                self._prune(now)
        return counts

    def peek(self, key: str) -> dict[str, int]:
        """Current counts for key without counting a hit."""
        now = self._clock()
        with self._lock:
            return {
                window: self._counts.get((key, window, int(now // length)), 0)
                for window, length in WINDOWS.items()
            }

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._counts.clear()
            else:
                for bucket in [b for b in self._counts if b[0] == key]:
                    del self._counts[bucket]

    def _prune(self, now: float) -> None:
        current = {window: int(now // length) for window, length in WINDOWS.items()}
        stale = [b for b in self._counts if b[2] < current[b[1]]]
        for bucket in stale:
            del self._counts[bucket]
        self._last_prune = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)
