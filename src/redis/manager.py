import asyncio
import os
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from opentelemetry import trace
from opentelemetry.trace import SpanKind
from redis.cluster import RedisCluster
from redis.exceptions import (
    AuthenticationError,
    MovedError,
    RedisClusterException,
    RedisError,
)
from utils.azure_auth import get_credential
from utils.ml_logging import get_logger

import redis
from src.enums.monitoring import PeerService, SpanAttr

T = TypeVar("T")


class AzureRedisManager:
    """
    AzureRedisManager provides a simplified interface to connect, store,
    retrieve, and expire string values in Azure Cache for Redis.

    Topology and connectivity errors are not retried here: the manager only
    reconfigures itself (cluster switch, client rebuild) and re-raises, leaving
    retry decisions to the caller's resilience policy. An authentication
    error is the exception: the command is replayed once on a client built
    with a fresh token.
    """

    def __init__(
        self,
        host: str | None = None,
        access_key: str | None = None,
        port: int | None = None,
        db: int = 0,
        ssl: bool = True,
        credential: object | None = None,  # For DefaultAzureCredential
        user_name: str | None = None,
        scope: str | None = None,
        use_cluster: bool | None = None,
    ):
        """
        Initialize the Redis connection.
        """
        self.logger = get_logger(__name__)
        self.host = host or os.getenv("REDIS_HOST")
        self.access_key = access_key or os.getenv("REDIS_ACCESS_KEY")

        if port is not None:
            self.port = int(port)
        else:
            port_env = os.getenv("REDIS_PORT")
            if port_env:
                self.port = int(port_env)
            else:
                # Default to 10000 for Azure Redis Enterprise
                self.port = 10000
                self.logger.warning("REDIS_PORT not set, defaulting to 10000")

        self.db = db
        self.ssl = ssl
        self.tracer = trace.get_tracer(__name__)
        use_cluster_env = os.getenv("REDIS_USE_CLUSTER") or os.getenv("REDIS_CLUSTER_MODE")
        if use_cluster is not None:
            self.use_cluster = use_cluster
        elif use_cluster_env is not None:
            self.use_cluster = str(use_cluster_env).lower() in {"1", "true", "yes", "on"}
        else:
            self.use_cluster = False
        if not self.host:
            raise ValueError(
                "Redis host must be provided either as argument or environment variable."
            )
        if ":" in self.host:
            host_parts = self.host.rsplit(":", 1)
            if host_parts[1].isdigit():
                self.host = host_parts[0]
                self.port = int(host_parts[1])

        # AAD credential details
        self.credential = credential or (None if self.access_key else get_credential())
        self.scope = scope or os.getenv("REDIS_SCOPE") or "https://redis.azure.com/.default"
        self.user_name = user_name or os.getenv("REDIS_USER_NAME") or "user"
        self.token_expiry = 0

        self.logger.debug("Redis cluster mode enabled: %s", self.use_cluster)
        self._create_client()
        if not self.access_key:
            t = threading.Thread(target=self._refresh_loop, daemon=True)
            t.start()

    async def initialize(self) -> None:
        """
        Validate Redis connectivity at startup.

        Raises ConnectionError when the health check fails; callers decide
        whether to continue in degraded mode.
        """
        self.logger.debug(f"Validating Redis connection to {self.host}:{self.port}")
        loop = asyncio.get_event_loop()
        try:
            healthy = await loop.run_in_executor(None, self._health_check)
        except RedisError as e:
            raise ConnectionError(f"Failed to initialize Redis: {e}") from e
        if not healthy:
            raise ConnectionError("Redis health check failed")
        self.logger.debug("Redis connection validated successfully")

    def _health_check(self) -> bool:
        test_key = "health_check_test"
        if not self._execute("PING", lambda: self.redis_client.ping()):
            return False
        self._execute("SET", lambda: self.redis_client.set(test_key, "test_value", ex=5))
        result = self._execute("GET", lambda: self.redis_client.get(test_key))
        self._execute("DEL", lambda: self.redis_client.delete(test_key))
        return result == "test_value"

    def _redis_span(self, name: str, op: str | None = None):
        host = (self.host or "").split(":")[0]
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes={
                SpanAttr.PEER_SERVICE: PeerService.AZURE_MANAGED_REDIS,
                SpanAttr.SERVER_ADDRESS: host,
                SpanAttr.SERVER_PORT: self.port or 6380,
                SpanAttr.DB_SYSTEM: "redis",
                **({SpanAttr.DB_OPERATION: op} if op else {}),
            },
        )

    def _execute(self, command_name: str, operation: Callable[[], T]) -> T:
        """
        Execute a Redis command, reconfiguring the client on topology or auth errors.

        An authentication error refreshes the AAD token and replays the command
        once. MOVED switches to cluster mode and propagates; connection-level
        errors rebuild the client and propagate.
        """
        try:
            return operation()
        except AuthenticationError:
            self.logger.info(
                "Redis authentication error on %s, refreshing credentials", command_name
            )
            self._create_client()
            return operation()
        except MovedError as moved_err:
            self.logger.warning(
                "Redis MOVED error on %s: %s. Enabling cluster mode and reconnecting.",
                command_name,
                moved_err,
            )
            self.use_cluster = True
            self._create_client()
            raise
        except (RedisError, OSError) as redis_err:
            self.logger.warning("Redis error on %s: %s", command_name, redis_err)
            try:
                self._create_client()
            except RedisError as rebuild_err:
                self.logger.warning("Redis client rebuild failed: %s", rebuild_err)
            raise

    def _create_client(self):
        """(Re)create Redis client and record expiry for AAD if needed."""
        common_kwargs = {
            "host": self.host,
            "port": self.port,
            "ssl": self.ssl,
            "decode_responses": True,
            "socket_keepalive": True,
            "health_check_interval": 30,
            "socket_connect_timeout": 0.2,
            "socket_timeout": 1.0,
            "max_connections": 200,
            "client_name": "orchestration-core",
        }

        cluster_kwargs = {
            **common_kwargs,
            "require_full_coverage": False,
            "reinitialize_steps": 1,
            "read_from_replicas": os.getenv("REDIS_READ_FROM_REPLICAS", "false").lower()
            in {"1", "true", "yes", "on"},
        }

        if self.access_key:
            auth_kwargs = {"password": self.access_key}
        else:
            token = self.credential.get_token(self.scope)
            self.token_expiry = token.expires_on
            auth_kwargs = {"username": self.user_name, "password": token.token}

        try:
            if self.use_cluster:
                cluster_kwargs.update(auth_kwargs)
                cluster_kwargs.setdefault("ssl_cert_reqs", None)
                cluster_kwargs.setdefault("ssl_check_hostname", False)
                self.redis_client = RedisCluster(**cluster_kwargs)
                self.logger.debug("Azure Redis connection initialized in cluster mode.")
            else:
                standalone_kwargs = {**common_kwargs, "db": self.db, **auth_kwargs}
                self.redis_client = redis.Redis(**standalone_kwargs)
                self.logger.debug("Azure Redis connection initialized in standalone mode.")
        except RedisClusterException as exc:
            self.logger.warning("Redis cluster initialization failed (will try standalone): %s", exc)
            if not self.use_cluster:
                raise
            standalone_kwargs = {**common_kwargs, "db": self.db, **auth_kwargs}
            self.redis_client = redis.Redis(**standalone_kwargs)
            self.use_cluster = False

        if not self.access_key:
            self.logger.debug(
                "Azure Redis connection initialized with AAD token (expires at %s).",
                self.token_expiry,
            )

    def _refresh_loop(self):
        """Background thread: sleep until just before expiry, then refresh token."""
        while True:
            now = int(time.time())
            # sleep until 60s before expiry
            wait = max(self.token_expiry - now - 60, 1)
            time.sleep(wait)
            try:
                self.logger.debug("Refreshing Azure Redis AAD token in background...")
                self._create_client()
            except Exception as e:
                self.logger.error("Failed to refresh Redis token: %s", e)
                time.sleep(5)

    def set_value(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Set a string value in Redis (SETEX when a TTL is given)."""

        def _set_operation():
            with self._redis_span("Redis.SET", "SETEX" if ttl_seconds is not None else "SET"):
                if ttl_seconds is not None:
                    return self.redis_client.setex(key, ttl_seconds, str(value))
                return self.redis_client.set(key, str(value))

        return bool(self._execute("SET", _set_operation))

    def get_value(self, key: str) -> str | None:
        """Get a string value from Redis."""

        def _get_operation():
            with self._redis_span("Redis.GET", "GET"):
                value = self.redis_client.get(key)
                return value.decode() if isinstance(value, bytes) else value

        return self._execute("GET", _get_operation)

    def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL of an existing key."""

        def _expire_operation():
            with self._redis_span("Redis.EXPIRE", "EXPIRE"):
                return self.redis_client.expire(key, ttl_seconds)

        return bool(self._execute("EXPIRE", _expire_operation))

    def delete(self, key: str) -> int:
        """Delete a key from Redis."""

        def _delete_operation():
            with self._redis_span("Redis.DEL", "DEL"):
                return self.redis_client.delete(key)

        return self._execute("DEL", _delete_operation)

    async def get_value_async(self, key: str) -> str | None:
        """Async version of get_value using thread pool executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.get_value, key)

    async def set_value_async(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Async version of set_value using thread pool executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.set_value, key, value, ttl_seconds)

    async def expire_async(self, key: str, ttl_seconds: int) -> bool:
        """Async version of expire using thread pool executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.expire, key, ttl_seconds)

    async def delete_async(self, key: str) -> int:
        """Async version of delete using thread pool executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.delete, key)
