"""
Tiered (L1 in-process + L2 Redis) result cache.

Exports:
- TieredCache: Lookup/store with L2 → L1 promotion and hit statistics
- CacheStatistics: Snapshot of hit/miss counters
- normalize_query / build_cache_key: Key construction
"""

from src.cache.keys import build_cache_key, normalize_query
from src.cache.memory import CacheEntry, CacheTier, MemoryTier
from src.cache.tiered import CacheStatistics, TieredCache

__all__ = [
    "CacheEntry",
    "CacheStatistics",
    "CacheTier",
    "MemoryTier",
    "TieredCache",
    "build_cache_key",
    "normalize_query",
]
