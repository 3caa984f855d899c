"""Process-local (L1) cache tier."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class CacheTier(str, Enum):
    L1 = "l1"
    L2 = "l2"


@dataclass
class CacheEntry:
    normalized_key: str
    payload: str
    written_at: float
    ttl_seconds: float
    tier: CacheTier = CacheTier.L1

    def is_expired(self, now: float) -> bool:
        return now >= self.written_at + self.ttl_seconds


class MemoryTier:
    """
    Lock-protected TTL map with max-entries eviction.

    Entries are kept in write order; once ``max_entries`` is exceeded the
    oldest-written entries are evicted first.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> CacheEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                return None
            return entry

    def set(self, key: str, normalized_key: str, payload: str, ttl_seconds: float) -> CacheEntry:
        entry = CacheEntry(
            normalized_key=normalized_key,
            payload=payload,
            written_at=self._clock(),
            ttl_seconds=ttl_seconds,
            tier=CacheTier.L1,
        )
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
