"""
Two-level cache for derived results (criteria extraction and similar).

L1 is process-local and fastest; L2 is Redis, shared across instances.
An L2 hit is copied verbatim into L1. L2 is optional and its failures
degrade silently to L1-only operation.
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from opentelemetry import trace

from config.types import CacheSettings
from src.cache.keys import build_cache_key, normalize_query
from src.cache.memory import CacheTier, MemoryTier
from src.enums.monitoring import SpanAttr
from src.redis.manager import AzureRedisManager
from src.resilience.executor import ResilientCallExecutor
from src.resilience.policies import PolicyClass
from utils.ml_logging import get_logger

logger = get_logger("cache.tiered")
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class CacheStatistics:
    l1_hits: int = 0
    l2_hits: int = 0
    misses: int = 0

    @property
    def total_hits(self) -> int:
        return self.l1_hits + self.l2_hits

    @property
    def total_requests(self) -> int:
        return self.total_hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        return self.total_hits / total if total else 0.0

    def to_dict(self) -> dict:
        return {
            "l1_hits": self.l1_hits,
            "l2_hits": self.l2_hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class TieredCache:
    """
    L1 (in-process) + L2 (Redis) cache keyed by normalized query.

    No single-flight: concurrent misses for the same key each compute
    independently.
    """

    def __init__(
        self,
        settings: CacheSettings | None = None,
        redis_manager: AzureRedisManager | None = None,
        executor: ResilientCallExecutor | None = None,
        memory: MemoryTier | None = None,
    ):
        self.settings = settings or CacheSettings()
        self._redis = redis_manager
        self._executor = executor or ResilientCallExecutor()
        self._l1 = memory or MemoryTier(max_entries=self.settings.l1_max_entries)
        self.l1_ttl_seconds = self.settings.l1_ttl_minutes * 60
        self.l2_ttl_seconds = self.settings.l2_ttl_minutes * 60

        self._stats_lock = threading.Lock()
        self._l1_hits = 0
        self._l2_hits = 0
        self._misses = 0

        logger.info(
            "TieredCache initialized. domain=%s env=%s version=%s L1=%smin L2=%smin redis=%s",
            self.settings.domain,
            self.settings.environment,
            self.settings.version,
            self.settings.l1_ttl_minutes,
            self.settings.l2_ttl_minutes,
            self._redis is not None,
        )

    def key_for(self, query: str | None) -> tuple[str, str]:
        """Return ``(normalized_key, cache_key)`` for a query."""
        normalized = normalize_query(query, self.settings.max_key_length)
        cache_key = build_cache_key(
            self.settings.domain,
            self.settings.environment,
            self.settings.version,
            normalized,
        )
        return normalized, cache_key

    async def get(self, query: str | None) -> str | None:
        normalized, cache_key = self.key_for(query)

        with tracer.start_as_current_span(
            "cache.get", attributes={SpanAttr.CACHE_KEY.value: normalized[:50]}
        ) as span:
            entry = self._l1.get(cache_key)
            if entry is not None and entry.payload:
                self._record(CacheTier.L1)
                span.set_attribute(SpanAttr.CACHE_TIER.value, CacheTier.L1.value)
                logger.debug("L1 cache hit for %s", normalized)
                return entry.payload

            if self._redis is not None:
                try:
                    value = await self._executor.execute(
                        lambda: self._redis.get_value_async(cache_key),
                        PolicyClass.CACHE_OP,
                        operation_name="cache.l2_get",
                    )
                except Exception as exc:
                    logger.warning(
                        "L2 cache read failed for %s; continuing L1-only (%s)",
                        normalized,
                        type(exc).__name__,
                    )
                    value = None

                if value:
                    self._l1.set(cache_key, normalized, value, self.l1_ttl_seconds)
                    self._record(CacheTier.L2)
                    span.set_attribute(SpanAttr.CACHE_TIER.value, CacheTier.L2.value)
                    logger.debug("L2 cache hit for %s (promoted to L1)", normalized)
                    return value

            self._record(None)
            span.set_attribute(SpanAttr.CACHE_HIT.value, False)
            logger.debug("Cache miss for %s", normalized)
            return None

    async def set(self, query: str | None, payload: str | None) -> None:
        if not payload:
            logger.debug("Skipping cache set for empty payload")
            return

        normalized, cache_key = self.key_for(query)
        self._l1.set(cache_key, normalized, payload, self.l1_ttl_seconds)

        if self._redis is None:
            logger.debug("Cached %s in L1 only (no Redis)", normalized)
            return

        try:
            await self._executor.execute(
                lambda: self._redis.set_value_async(cache_key, payload, self.l2_ttl_seconds),
                PolicyClass.CACHE_OP,
                operation_name="cache.l2_set",
            )
        except Exception as exc:
            logger.warning(
                "L2 cache write failed for %s; entry kept in L1 only (%s)",
                normalized,
                type(exc).__name__,
            )
            return
        logger.debug("Cached %s in L1+L2", normalized)

    async def get_or_compute(
        self,
        query: str | None,
        compute: Callable[[], Awaitable[str | None]],
    ) -> str | None:
        cached = await self.get(query)
        if cached is not None:
            return cached
        value = await compute()
        await self.set(query, value)
        return value

    def get_statistics(self) -> CacheStatistics:
        with self._stats_lock:
            return CacheStatistics(
                l1_hits=self._l1_hits,
                l2_hits=self._l2_hits,
                misses=self._misses,
            )

    def _record(self, tier: CacheTier | None) -> None:
        with self._stats_lock:
            if tier is CacheTier.L1:
                self._l1_hits += 1
            elif tier is CacheTier.L2:
                self._l2_hits += 1
            else:
                self._misses += 1
