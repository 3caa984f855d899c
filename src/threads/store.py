"""
Conversation → agent-thread mapping stores.

Two implementations share the ``ThreadMappingStore`` protocol:

- ``RedisThreadMappingStore``: the primary store. Key ``thread:{conversation_id}``,
  value is the thread id, sliding TTL refreshed on every hit.
- ``InMemoryThreadMappingStore``: degraded-mode fallback for when no Redis is
  configured. Per-process only, lost on restart, and not shared across
  replicas.

Neither store ever raises to its caller. A backing-store failure is a miss on
read and a no-op on write; the worst case downstream is an extra thread.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from src.redis.manager import AzureRedisManager
from src.resilience.executor import ResilientCallExecutor
from src.resilience.policies import PolicyClass
from utils.ml_logging import get_logger

logger = get_logger("threads.store")

THREAD_KEY_PREFIX = "thread:"


def thread_key(conversation_id: str) -> str:
    return f"{THREAD_KEY_PREFIX}{conversation_id}"


@dataclass
class ConversationThreadMapping:
    conversation_id: str
    thread_id: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@runtime_checkable
class ThreadMappingStore(Protocol):
    async def get(self, conversation_id: str | None) -> str | None: ...

    async def set(self, conversation_id: str | None, thread_id: str | None) -> None: ...

    async def remove(self, conversation_id: str | None) -> None: ...


class RedisThreadMappingStore:
    """Thread mappings in Redis, every command routed through the CACHE_OP policy."""

    def __init__(
        self,
        redis_manager: AzureRedisManager,
        executor: ResilientCallExecutor,
        ttl_minutes: int = 120,
    ):
        self._redis = redis_manager
        self._executor = executor
        self.ttl_seconds = int(ttl_minutes * 60)

    async def get(self, conversation_id: str | None) -> str | None:
        if not conversation_id:
            return None

        key = thread_key(conversation_id)
        try:
            thread_id = await self._executor.execute(
                lambda: self._redis.get_value_async(key),
                PolicyClass.CACHE_OP,
                operation_name="thread_mapping.get",
            )
        except Exception as exc:
            logger.warning(
                "Thread mapping lookup failed for %s; treating as miss (%s)",
                conversation_id,
                type(exc).__name__,
            )
            return None

        if not thread_id:
            logger.debug("No thread mapping for conversation %s", conversation_id)
            return None

        try:
            await self._executor.execute(
                lambda: self._redis.expire_async(key, self.ttl_seconds),
                PolicyClass.CACHE_OP,
                operation_name="thread_mapping.refresh_ttl",
            )
        except Exception as exc:
            logger.warning(
                "Could not refresh thread mapping TTL for %s (%s)",
                conversation_id,
                type(exc).__name__,
            )

        logger.debug("Thread mapping hit: %s -> %s", conversation_id, thread_id)
        return thread_id

    async def set(self, conversation_id: str | None, thread_id: str | None) -> None:
        if not conversation_id or not thread_id:
            return

        key = thread_key(conversation_id)
        try:
            await self._executor.execute(
                lambda: self._redis.set_value_async(key, thread_id, self.ttl_seconds),
                PolicyClass.CACHE_OP,
                operation_name="thread_mapping.set",
            )
        except Exception as exc:
            logger.warning(
                "Failed to persist thread mapping %s -> %s (%s)",
                conversation_id,
                thread_id,
                type(exc).__name__,
            )
            return
        logger.debug("Stored thread mapping %s -> %s", conversation_id, thread_id)

    async def remove(self, conversation_id: str | None) -> None:
        if not conversation_id:
            return

        key = thread_key(conversation_id)
        try:
            await self._executor.execute(
                lambda: self._redis.delete_async(key),
                PolicyClass.CACHE_OP,
                operation_name="thread_mapping.remove",
            )
        except Exception as exc:
            logger.warning(
                "Failed to remove thread mapping for %s (%s)",
                conversation_id,
                type(exc).__name__,
            )


class InMemoryThreadMappingStore:
    """
    Process-local thread mappings with passive expiry and a periodic sweep.

    Expired entries are treated as absent on read even before the sweeper
    removes them.
    """

    def __init__(
        self,
        ttl_minutes: int = 120,
        sweep_interval_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_minutes * 60
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, ConversationThreadMapping] = {}
        self._lock = threading.Lock()
        self._sweeper_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

        logger.warning(
            "Using in-memory thread mapping store: mappings are per-process and "
            "lost on restart (degraded mode)"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(self, conversation_id: str | None) -> str | None:
        if not conversation_id:
            return None

        now = self._clock()
        with self._lock:
            mapping = self._entries.get(conversation_id)
            if mapping is None:
                return None
            if mapping.is_expired(now):
                del self._entries[conversation_id]
                return None
            mapping.expires_at = now + self.ttl_seconds
            return mapping.thread_id

    async def set(self, conversation_id: str | None, thread_id: str | None) -> None:
        if not conversation_id or not thread_id:
            return

        with self._lock:
            self._entries[conversation_id] = ConversationThreadMapping(
                conversation_id=conversation_id,
                thread_id=thread_id,
                expires_at=self._clock() + self.ttl_seconds,
            )

    async def remove(self, conversation_id: str | None) -> None:
        if not conversation_id:
            return

        with self._lock:
            self._entries.pop(conversation_id, None)

    def sweep_expired(self) -> int:
        """Drop every entry past its expiry; returns the number evicted."""
        now = self._clock()
        with self._lock:
            expired = [cid for cid, m in self._entries.items() if m.is_expired(now)]
            for cid in expired:
                del self._entries[cid]
        if expired:
            logger.debug("Swept %d expired thread mappings", len(expired))
        return len(expired)

    def start_sweeper(self) -> None:
        if self._sweeper_task and not self._sweeper_task.done():
            return
        self._shutdown_event.clear()
        self._sweeper_task = asyncio.create_task(
            self._sweep_loop(), name="thread-mapping-sweeper"
        )

    async def stop_sweeper(self) -> None:
        self._shutdown_event.set()
        if self._sweeper_task and not self._sweeper_task.done():
            self._sweeper_task.cancel()
            try:
                await asyncio.wait_for(self._sweeper_task, timeout=2.0)
            except (TimeoutError, asyncio.CancelledError):
                pass
        self._sweeper_task = None

    async def _sweep_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.sweep_interval_seconds)
                if self._shutdown_event.is_set():
                    break
                self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Thread mapping sweep error: {e}")


def build_thread_mapping_store(
    settings,
    redis_manager: AzureRedisManager | None,
    executor: ResilientCallExecutor,
) -> ThreadMappingStore:
    """Redis-backed store when a manager is available, in-memory fallback otherwise."""
    if redis_manager is not None:
        return RedisThreadMappingStore(
            redis_manager, executor, ttl_minutes=settings.ttl_minutes
        )
    return InMemoryThreadMappingStore(
        ttl_minutes=settings.ttl_minutes,
        sweep_interval_seconds=settings.sweep_interval_seconds,
    )
