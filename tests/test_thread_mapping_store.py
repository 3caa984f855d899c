"""
Tests for the conversation → thread mapping stores.

Tests cover:
- set/get round trip and key layout in Redis
- Sliding TTL refresh on read
- Passive expiry and the periodic sweep of the in-memory fallback
- Backing-store failures degrading to a miss / no-op
"""

import asyncio

import pytest

from config.types import ThreadMappingSettings
from src.threads.store import (
    InMemoryThreadMappingStore,
    RedisThreadMappingStore,
    ThreadMappingStore,
    build_thread_mapping_store,
    thread_key,
)

# ═══════════════════════════════════════════════════════════════════════════════
# REDIS STORE
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_redis_store_set_then_get(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor, ttl_minutes=120)

    await store.set("conv-1", "thread_abc")

    assert await store.get("conv-1") == "thread_abc"
    assert fake_redis.values == {"thread:conv-1": "thread_abc"}
    assert fake_redis.ttls["thread:conv-1"] == 7200


@pytest.mark.asyncio
async def test_redis_store_refreshes_ttl_on_hit(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor, ttl_minutes=30)
    fake_redis.values[thread_key("conv-1")] = "thread_abc"

    assert await store.get("conv-1") == "thread_abc"

    assert ("EXPIRE", "thread:conv-1") in fake_redis.commands
    assert fake_redis.ttls["thread:conv-1"] == 1800


@pytest.mark.asyncio
async def test_redis_store_miss_does_not_touch_ttl(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor)

    assert await store.get("unknown") is None
    assert [c for c, _ in fake_redis.commands] == ["GET"]


@pytest.mark.asyncio
async def test_redis_store_last_writer_wins(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor)

    await asyncio.gather(store.set("conv-1", "thread_a"), store.set("conv-1", "thread_b"))

    assert await store.get("conv-1") in {"thread_a", "thread_b"}
    await store.set("conv-1", "thread_c")
    assert await store.get("conv-1") == "thread_c"


@pytest.mark.asyncio
async def test_redis_store_remove(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor)
    await store.set("conv-1", "thread_abc")

    await store.remove("conv-1")

    assert await store.get("conv-1") is None


@pytest.mark.asyncio
async def test_redis_outage_is_a_miss_and_no_op(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor)
    fake_redis.down = True

    assert await store.get("conv-1") is None
    await store.set("conv-1", "thread_abc")
    await store.remove("conv-1")

    # initial attempt + 2 retries per command
    assert [c for c, _ in fake_redis.commands].count("GET") == 3
    assert fake_redis.values == {}


@pytest.mark.asyncio
async def test_redis_ttl_refresh_failure_still_returns_mapping(fake_redis, executor):
    store = RedisThreadMappingStore(fake_redis, executor)
    fake_redis.values["thread:conv-1"] = "thread_abc"

    async def broken_expire(key, ttl_seconds):
        raise ConnectionError("reset by peer")

    fake_redis.expire_async = broken_expire

    assert await store.get("conv-1") == "thread_abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("conversation_id", [None, ""])
async def test_redis_store_ignores_missing_conversation_id(fake_redis, executor, conversation_id):
    store = RedisThreadMappingStore(fake_redis, executor)

    assert await store.get(conversation_id) is None
    await store.set(conversation_id, "thread_abc")
    await store.remove(conversation_id)

    assert fake_redis.commands == []


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY FALLBACK
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_memory_store_set_then_get(fake_clock):
    store = InMemoryThreadMappingStore(ttl_minutes=120, clock=fake_clock)

    await store.set("conv-1", "thread_abc")

    assert await store.get("conv-1") == "thread_abc"
    assert len(store) == 1


@pytest.mark.asyncio
async def test_memory_store_entry_expires_after_ttl(fake_clock):
    store = InMemoryThreadMappingStore(ttl_minutes=2, clock=fake_clock)
    await store.set("conv-1", "thread_abc")

    fake_clock.advance(3 * 60)

    assert await store.get("conv-1") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_memory_store_ttl_slides_on_read(fake_clock):
    store = InMemoryThreadMappingStore(ttl_minutes=2, clock=fake_clock)
    await store.set("conv-1", "thread_abc")

    fake_clock.advance(90)
    assert await store.get("conv-1") == "thread_abc"
    fake_clock.advance(90)
    assert await store.get("conv-1") == "thread_abc"
    fake_clock.advance(121)
    assert await store.get("conv-1") is None


@pytest.mark.asyncio
async def test_memory_store_sweep_removes_only_expired(fake_clock):
    store = InMemoryThreadMappingStore(ttl_minutes=2, clock=fake_clock)
    await store.set("old", "thread_old")
    fake_clock.advance(90)
    await store.set("fresh", "thread_fresh")
    fake_clock.advance(60)

    assert store.sweep_expired() == 1
    assert len(store) == 1
    assert await store.get("fresh") == "thread_fresh"


@pytest.mark.asyncio
async def test_memory_store_overwrite_and_remove(fake_clock):
    store = InMemoryThreadMappingStore(clock=fake_clock)
    await store.set("conv-1", "thread_a")
    await store.set("conv-1", "thread_b")

    assert await store.get("conv-1") == "thread_b"
    await store.remove("conv-1")
    assert await store.get("conv-1") is None


@pytest.mark.asyncio
async def test_memory_store_sweeper_runs_in_background(fake_clock):
    store = InMemoryThreadMappingStore(ttl_minutes=1, sweep_interval_seconds=0.01, clock=fake_clock)
    await store.set("conv-1", "thread_abc")
    fake_clock.advance(120)

    store.start_sweeper()
    for _ in range(100):
        if len(store) == 0:
            break
        await asyncio.sleep(0.01)
    await store.stop_sweeper()

    assert len(store) == 0


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════


def test_factory_prefers_redis_when_available(fake_redis, executor):
    store = build_thread_mapping_store(ThreadMappingSettings(), fake_redis, executor)
    assert isinstance(store, RedisThreadMappingStore)
    assert isinstance(store, ThreadMappingStore)


def test_factory_falls_back_to_memory(executor):
    store = build_thread_mapping_store(
        ThreadMappingSettings(ttl_minutes=5, sweep_interval_seconds=30), None, executor
    )
    assert isinstance(store, InMemoryThreadMappingStore)
    assert store.ttl_seconds == 300
    assert store.sweep_interval_seconds == 30
