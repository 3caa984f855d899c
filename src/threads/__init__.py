"""
Conversation → agent-thread mapping.

Exports:
- ThreadMappingStore: Protocol shared by all stores
- RedisThreadMappingStore: Primary, Redis-backed store with sliding TTL
- InMemoryThreadMappingStore: Degraded-mode per-process fallback
- build_thread_mapping_store: Picks the store from configuration
"""

from src.threads.store import (
    ConversationThreadMapping,
    InMemoryThreadMappingStore,
    RedisThreadMappingStore,
    ThreadMappingStore,
    build_thread_mapping_store,
    thread_key,
)

__all__ = [
    "ConversationThreadMapping",
    "InMemoryThreadMappingStore",
    "RedisThreadMappingStore",
    "ThreadMappingStore",
    "build_thread_mapping_store",
    "thread_key",
]
