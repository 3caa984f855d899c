import os
import sys
from pathlib import Path

# Disable telemetry for tests
os.environ["DISABLE_CLOUD_TELEMETRY"] = "true"

# Keep configuration deterministic regardless of the developer's .env
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("AGENT_USE_FAKE", "true")

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

from config.types import ResilienceSettings  # noqa: E402
from src.resilience.executor import ResilientCallExecutor  # noqa: E402


class FakeRedisManager:
    """
    Async surface of AzureRedisManager over a dict.

    ``down = True`` makes every command raise a redis ConnectionError.
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False
        self.commands: list[tuple[str, str]] = []

    def _check(self, command: str, key: str) -> None:
        self.commands.append((command, key))
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def get_value_async(self, key):
        self._check("GET", key)
        return self.values.get(key)

    async def set_value_async(self, key, value, ttl_seconds=None):
        self._check("SET", key)
        self.values[key] = value
        if ttl_seconds is not None:
            self.ttls[key] = ttl_seconds
        return True

    async def expire_async(self, key, ttl_seconds):
        self._check("EXPIRE", key)
        if key not in self.values:
            return False
        self.ttls[key] = ttl_seconds
        return True

    async def delete_async(self, key):
        self._check("DEL", key)
        self.ttls.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def fake_redis() -> FakeRedisManager:
    return FakeRedisManager()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor() -> ResilientCallExecutor:
    """Executor with production retry counts but no real backoff sleeps."""
    settings = ResilienceSettings(
        agent_call_timeout_seconds=2.0,
        agent_call_max_retries=2,
        agent_call_retry_base_delay_seconds=1.0,
        redis_max_retries=2,
        redis_retry_base_delay_ms=100,
        redis_operation_timeout_seconds=1.0,
    )
    return ResilientCallExecutor(settings=settings, sleep=_no_sleep)
