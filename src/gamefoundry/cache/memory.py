"""In-memory LRU tier with a soft byte budget."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gamefoundry.cache.entry import CacheEntry

DEFAULT_MEMORY_BUDGET = 64 * 1024 * 1024


class MemoryTier:
    """LRU map of cache entries.

    All access goes through an internal lock; callers never touch the
    underlying map. The byte budget is soft: the most recent entry is kept
    even if it alone exceeds the budget.
    """

    def __init__(self, budget_bytes: int = DEFAULT_MEMORY_BUDGET) -> None:
        self.budget_bytes = budget_bytes
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits: dict[str, int] = {}
        self._bytes = 0
        self._lock = threading.Lock()
        self.evictions = 0

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            self._hits[key] = self._hits.get(key, 0) + 1
            return entry

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            existing = self._entries.pop(entry.key, None)
            if existing is not None:
                self._bytes -= existing.size_bytes
            self._entries[entry.key] = entry
            self._bytes += entry.size_bytes
            self._evict_locked()

    def _evict_locked(self) -> None:
        while self._bytes > self.budget_bytes and len(self._entries) > 1:
            key, evicted = self._entries.popitem(last=False)
            self._bytes -= evicted.size_bytes
            self._hits.pop(key, None)
            self.evictions += 1

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def hit_count(self, key: str) -> int:
        with self._lock:
            return self._hits.get(key, 0)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)
