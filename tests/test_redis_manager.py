import builtins

import pytest
from redis.exceptions import AuthenticationError, ConnectionError, MovedError, RedisClusterException
from src.redis import manager as redis_manager
from src.redis.manager import AzureRedisManager
from src.resilience.policies import PolicyClass


class _FakeRedis:
    def __init__(self) -> None:
        self.get_calls = 0

    def get(self, key: str) -> str | None:
        self.get_calls += 1
        raise MovedError("1234 127.0.0.1:7001")


class _FakeClusterRedis:
    def __init__(self) -> None:
        self.get_calls = 0
        self.store: dict[str, str] = {"thread:conv-1": "thread-abc"}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> str | None:
        self.get_calls += 1
        return self.store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        return True

    def expire(self, key: str, ttl: int) -> bool:
        if key not in self.store:
            return False
        self.ttls[key] = ttl
        return True

    def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0


def _manager(**kwargs) -> AzureRedisManager:
    return AzureRedisManager(
        host="example.redis.local",
        port=6380,
        access_key="dummy",
        ssl=False,
        credential=object(),
        **kwargs,
    )


def test_get_value_switches_to_cluster(monkeypatch):
    single_node_client = _FakeRedis()
    cluster_client = _FakeClusterRedis()

    # Stub the redis client constructors used inside the manager
    monkeypatch.setattr(
        redis_manager.redis,
        "Redis",
        lambda *args, **kwargs: single_node_client,
    )
    monkeypatch.setattr(
        redis_manager,
        "RedisCluster",
        lambda *args, **kwargs: cluster_client,
    )

    mgr = _manager()

    with pytest.raises(MovedError):
        mgr.get_value("thread:conv-1")

    assert mgr.use_cluster is True
    assert mgr.redis_client is cluster_client
    assert single_node_client.get_calls == 1
    assert cluster_client.get_calls == 0
    assert mgr.get_value("thread:conv-1") == "thread-abc"


@pytest.mark.asyncio
async def test_moved_is_retried_by_cache_policy_on_cluster_client(monkeypatch, executor):
    single_node_client = _FakeRedis()
    cluster_client = _FakeClusterRedis()
    monkeypatch.setattr(redis_manager.redis, "Redis", lambda *args, **kwargs: single_node_client)
    monkeypatch.setattr(redis_manager, "RedisCluster", lambda *args, **kwargs: cluster_client)

    mgr = _manager()

    value = await executor.execute(
        lambda: mgr.get_value_async("thread:conv-1"), PolicyClass.CACHE_OP
    )

    assert value == "thread-abc"
    assert single_node_client.get_calls == 1
    assert cluster_client.get_calls == 1


def test_get_value_raises_without_cluster_support(monkeypatch):
    single_node_client = _FakeRedis()

    monkeypatch.setattr(
        redis_manager.redis,
        "Redis",
        lambda *args, **kwargs: single_node_client,
    )
    monkeypatch.setattr(
        redis_manager,
        "RedisCluster",
        lambda *args, **kwargs: (_ for _ in ()).throw(RedisClusterException("cluster unavailable")),
    )

    mgr = _manager()

    with pytest.raises(MovedError):
        mgr.get_value("thread:conv-1")


def test_cluster_initialization_falls_back_to_standalone(monkeypatch):
    standalone_client = _FakeClusterRedis()
    monkeypatch.setattr(
        redis_manager.redis,
        "Redis",
        lambda *args, **kwargs: standalone_client,
    )
    monkeypatch.setattr(
        redis_manager,
        "RedisCluster",
        lambda *args, **kwargs: (_ for _ in ()).throw(RedisClusterException("cluster unavailable")),
    )

    mgr = _manager(use_cluster=True)

    assert mgr.redis_client is standalone_client
    assert mgr.use_cluster is False


def test_set_value_uses_setex_when_ttl_given(monkeypatch):
    client = _FakeClusterRedis()
    monkeypatch.setattr(redis_manager.redis, "Redis", lambda *args, **kwargs: client)

    mgr = _manager()

    assert mgr.set_value("thread:conv-2", "thread-xyz", ttl_seconds=7200) is True
    assert client.store["thread:conv-2"] == "thread-xyz"
    assert client.ttls["thread:conv-2"] == 7200
    assert mgr.expire("thread:conv-2", 60) is True
    assert mgr.delete("thread:conv-2") == 1
    assert mgr.expire("thread:conv-2", 60) is False


def test_authentication_error_rebuilds_client_and_replays(monkeypatch):
    class _ExpiredTokenRedis(_FakeClusterRedis):
        def get(self, key):
            raise AuthenticationError("token expired")

    clients = [_ExpiredTokenRedis(), _FakeClusterRedis()]
    monkeypatch.setattr(redis_manager.redis, "Redis", lambda *args, **kwargs: clients.pop(0))

    mgr = _manager()

    assert mgr.get_value("thread:conv-1") == "thread-abc"
    assert clients == []


def test_connection_error_propagates_after_rebuild(monkeypatch):
    class _DownRedis(_FakeClusterRedis):
        def get(self, key):
            raise ConnectionError("connection refused")

    built = []

    def _factory(*args, **kwargs):
        client = _DownRedis()
        built.append(client)
        return client

    monkeypatch.setattr(redis_manager.redis, "Redis", _factory)

    mgr = _manager()

    with pytest.raises(ConnectionError):
        mgr.get_value("thread:conv-1")
    assert len(built) == 2


@pytest.mark.asyncio
async def test_async_wrappers_delegate_to_sync_commands(monkeypatch):
    client = _FakeClusterRedis()
    monkeypatch.setattr(redis_manager.redis, "Redis", lambda *args, **kwargs: client)

    mgr = _manager()

    assert await mgr.set_value_async("k", "v", ttl_seconds=30) is True
    assert await mgr.get_value_async("k") == "v"
    assert await mgr.expire_async("k", 90) is True
    assert client.ttls["k"] == 90
    assert await mgr.delete_async("k") == 1
    assert await mgr.get_value_async("k") is None


@pytest.mark.asyncio
async def test_initialize_runs_health_check(monkeypatch):
    class _HealthyRedis(_FakeClusterRedis):
        def ping(self) -> bool:
            return True

        def set(self, key: str, value: str, ex: int | None = None) -> bool:
            self.store[key] = value
            return True

    client = _HealthyRedis()
    monkeypatch.setattr(redis_manager.redis, "Redis", lambda *args, **kwargs: client)

    mgr = _manager()
    await mgr.initialize()

    assert "health_check_test" not in client.store


@pytest.mark.asyncio
async def test_initialize_reports_unreachable_redis(monkeypatch):
    class _DownRedis(_FakeClusterRedis):
        def ping(self) -> bool:
            raise ConnectionError("connection refused")

    monkeypatch.setattr(redis_manager.redis, "Redis", lambda *args, **kwargs: _DownRedis())

    mgr = _manager()

    with pytest.raises(builtins.ConnectionError, match="Failed to initialize Redis"):
        await mgr.initialize()
