"""
Redis-backed shared state store.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from shared.logging import get_logger
from shared.errors import ScriptError, StoreUnavailableError
from .base import StateStore, ttl_to_ms
from .scripts import DELETE_IF_EQUALS_LUA, INCREMENT_WITH_TTL_LUA

T = TypeVar("T")


class RedisStateStore(StateStore):
    """State store over a bounded, blocking Redis connection pool.

    The pool blocks (up to ``pool_timeout``) when every connection is busy,
    so bursts queue for a connection instead of failing at the pool.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        max_connections: int = 100,
        connect_timeout: float = 5.0,
        socket_timeout: float = 5.0,
        pool_timeout: float = 5.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.pool_timeout = pool_timeout
        self.logger = get_logger("gatekeeper.store.redis")
        self._redis: Optional[redis.Redis] = client
        self._pool: Optional[redis.BlockingConnectionPool] = None
        self._scripts: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings) -> "RedisStateStore":
        return cls(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            connect_timeout=settings.redis_connect_timeout,
            socket_timeout=settings.redis_socket_timeout,
            pool_timeout=settings.store_timeout,
        )

    def _get_redis(self) -> redis.Redis:
        """Get Redis client, creating the pool on first use."""
        if self._redis is None:
            self._pool = redis.BlockingConnectionPool.from_url(
                self.redis_url,
                max_connections=self.max_connections,
                timeout=self.pool_timeout,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.socket_timeout,
                decode_responses=True,
                health_check_interval=30,
            )
            self._redis = redis.Redis(connection_pool=self._pool)
        return self._redis

    async def _guard(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except RedisError as e:
            self.logger.error("Redis operation failed", operation=operation, error=str(e))
            raise StoreUnavailableError(
                "State store unavailable",
                details={"operation": operation},
            ) from e

    async def connect(self) -> None:
        """Create the pool and verify connectivity."""
        await self.ping()
        self.logger.info("Redis store connected", max_connections=self.max_connections)

    async def get(self, key: str) -> Optional[str]:
        return await self._guard("get", lambda: self._get_redis().get(key))

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: float) -> None:
        ttl_ms = ttl_to_ms(ttl_seconds)
        await self._guard("set", lambda: self._get_redis().set(key, value, px=ttl_ms))

    async def increment_with_ttl_on_first_write(self, key: str, ttl_seconds: float) -> int:
        current = await self.run_script(INCREMENT_WITH_TTL_LUA, keys=[key], args=[ttl_to_ms(ttl_seconds)])
        return int(current)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        deleted = await self.run_script(DELETE_IF_EQUALS_LUA, keys=[key], args=[expected])
        return bool(deleted)

    async def run_script(self, source: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """Execute a Lua script atomically (EVALSHA with EVAL fallback)."""
        script = self._scripts.get(source)
        if script is None:
            script = self._get_redis().register_script(source)
            self._scripts[source] = script

        try:
            return await script(keys=list(keys), args=list(args))
        except ResponseError as e:
            # Raised by the script body itself, not by connectivity
            self.logger.error("Redis script failed", error=str(e))
            raise ScriptError("Store script failed", details={"error": str(e)}) from e
        except RedisError as e:
            self.logger.error("Redis operation failed", operation="script", error=str(e))
            raise StoreUnavailableError(
                "State store unavailable",
                details={"operation": "script"},
            ) from e

    async def ping(self) -> bool:
        return bool(await self._guard("ping", lambda: self._get_redis().ping()))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            if self._pool is not None:
                await self._pool.disconnect()
            self._redis = None
            self._pool = None
            self._scripts.clear()
            self.logger.info("Redis store closed")

