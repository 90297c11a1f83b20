"""Byte-bounded LRU cache for proxied images."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable


@dataclass
class CachedImage:
    content: bytes
    content_type: str
    stored_at: float


class ImageCache:
    """LRU cache bounded by total bytes, with per-entry expiry."""

    def __init__(self, max_bytes: int, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.max_bytes = max_bytes
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CachedImage] = OrderedDict()
        self._size = 0

    def configure(self, max_bytes: int, ttl: float) -> None:
        """Apply new limits, evicting entries if the cache shrank."""
        with self._lock:
            self.max_bytes = max_bytes
            self.ttl = ttl
            self._evict()

    def get(self, key: str) -> CachedImage | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self.ttl:
                self._remove(key)
                return None
            self._entries.move_to_end(key)
            return entry

    def put(self, key: str, content: bytes, content_type: str) -> bool:
        """Store an image. Returns False if it is larger than the whole cache."""
        if len(content) > self.max_bytes:
            return False
        with self._lock:
            if key in self._entries:
                self._remove(key)
            self._entries[key] = CachedImage(content, content_type, self._clock())
            self._size += len(content)
            self._evict()
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._size = 0

    @property
    def size(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._size -= len(entry.content)

    def _evict(self) -> None:
        while self._entries and self._size > self.max_bytes:
            oldest = next(iter(self._entries))
            self._remove(oldest)
