from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable

# Returned by ``get`` on a miss; ``None`` is a legitimate cached value.
MISS: Any = object()


class TTLCache:
    """
    Thread-safe in-memory cache with a freshness window and LRU eviction.

    Entries are stored as ``(value, inserted_at)`` and served while
    ``now - inserted_at < ttl``. Writes beyond ``max_size`` evict the least
    recently used entry.
    """

    def __init__(
        self,
        ttl: float,
        max_size: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: Hashable, default: Any = MISS) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                value, inserted_at = entry
                if self._clock() - inserted_at < self.ttl:
                    self._entries.move_to_end(key)
                    self._hits += 1
                    return value
                del self._entries[key]
            self._misses += 1
            return default

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
            }
