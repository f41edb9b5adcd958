"""Cache adapter with an optional Redis tier.

This module provides:
- `RedisCacheClient`: thin async Redis wrapper reporting `Result` values
- `LocalOnlyCache`: adapter over the in-process TTL store alone
- `LocalPlusRemoteCache`: TTL store plus best-effort Redis mirror
- `build_cache()`: picks the adapter from configuration at startup

No adapter operation raises. When Redis is unreachable the process keeps
serving from its own TTL store, which may differ from other processes.
"""

from __future__ import annotations

import abc
import asyncio
import enum
import json
import logging
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from gigbook.core.error_handler import resilient_task, safe_background_task
from gigbook.core.redis_factory import create_redis_client
from gigbook.core.result import CacheError, Result, failure, success
from gigbook.core.ttl_store import KeyPattern, TTLStore, compile_pattern

logger = logging.getLogger(__name__)


class RedisCacheClient:
    """
    Redis client for JSON-serialized cache values.

    Every operation returns a `Result`; Redis and serialization errors are
    reported as `Failure(CacheError)` and logged, never raised.
    """

    def __init__(self, redis: Redis):
        self._redis = redis

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 5.0) -> "RedisCacheClient":
        return cls(create_redis_client(url, component="cache", socket_timeout=socket_timeout))

    @property
    def redis(self) -> Redis:
        return self._redis

    async def ping(self) -> Result[bool, CacheError]:
        try:
            return success(bool(await self._redis.ping()))
        except (RedisError, OSError) as e:
            return self._failed("ping", "Redis ping failed", e)

    async def get(self, key: str) -> Result[Optional[Any], CacheError]:
        """
        Get a value from Redis.

        Returns:
            Success(None) when the key is absent, Success(value) when found
        """
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return success(None)
            return success(json.loads(raw))
        except (RedisError, OSError) as e:
            return self._failed("get", f"Failed to get cache key {key}", e)
        except ValueError as e:
            return self._failed("get", f"Cache key {key} holds invalid JSON", e)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> Result[bool, CacheError]:
        try:
            serialized = json.dumps(value, default=str)
            await self._redis.set(key, serialized, px=max(1, int(ttl_seconds * 1000)))
            return success(True)
        except (RedisError, OSError) as e:
            return self._failed("set", f"Failed to set cache key {key}", e)
        except (TypeError, ValueError) as e:
            return self._failed("set", f"Value for cache key {key} is not serializable", e)

    async def delete(self, key: str) -> Result[bool, CacheError]:
        try:
            deleted = await self._redis.delete(key)
            return success(deleted > 0)
        except (RedisError, OSError) as e:
            return self._failed("delete", f"Failed to delete cache key {key}", e)

    async def delete_pattern(self, pattern: KeyPattern) -> Result[int, CacheError]:
        """
        Delete all keys matching a regular expression.

        Redis only understands glob patterns, so keys are scanned and the
        expression is applied client-side, the same way the TTL store does.
        """
        regex = compile_pattern(pattern)
        try:
            keys = []
            async for key in self._redis.scan_iter(match="*"):
                name = key.decode() if isinstance(key, bytes) else key
                if regex.search(name):
                    keys.append(key)
            if not keys:
                return success(0)
            deleted = await self._redis.delete(*keys)
            logger.info("Deleted %d Redis keys matching pattern: %s", deleted, regex.pattern)
            return success(int(deleted))
        except (RedisError, OSError) as e:
            return self._failed("delete_pattern", f"Failed to delete pattern {regex.pattern}", e)

    async def clear_all(self) -> Result[bool, CacheError]:
        try:
            await self._redis.flushdb()
            logger.warning("Redis cache cleared (all keys deleted)")
            return success(True)
        except (RedisError, OSError) as e:
            return self._failed("clear_all", "Failed to clear Redis cache", e)

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Error closing Redis connection: %s", e)

    @staticmethod
    def _failed(operation: str, message: str, exc: Exception) -> Result[Any, CacheError]:
        logger.warning("%s: %s", message, exc)
        return failure(CacheError(operation=f"Cache.{operation}", message=message, original_exception=exc))


class CacheAvailability(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"


class CacheBackend(abc.ABC):
    """Cache operations shared by every adapter; none of them raise."""

    def __init__(self, store: TTLStore) -> None:
        self.store = store

    @property
    @abc.abstractmethod
    def state(self) -> CacheAvailability:
        """Availability of the remote tier."""

    def is_connected(self) -> bool:
        return self.state is CacheAvailability.CONNECTED

    async def initialize(self) -> bool:
        return self.is_connected()

    @abc.abstractmethod
    async def get_cached(self, key: str) -> Optional[Any]:
        """Read a value, preferring the remote tier when it is reachable."""

    @abc.abstractmethod
    async def set_cached(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Write locally and mirror to the remote tier when reachable."""

    @abc.abstractmethod
    async def delete_cached(self, key: str) -> bool:
        """Delete a key from both tiers."""

    @abc.abstractmethod
    async def delete_cached_pattern(self, pattern: KeyPattern) -> int:
        """Delete every key matching a regular expression."""

    @abc.abstractmethod
    async def clear_all_cached(self) -> None:
        """Drop every entry and reset local counters."""

    def get_stats(self) -> dict[str, Any]:
        return {
            "redis": self.is_connected(),
            "state": self.state.value,
            "memory": self.store.get_stats(),
        }

    async def close(self) -> None:  # pragma: no cover - optional override
        return None


class LocalOnlyCache(CacheBackend):
    """Adapter used when no remote store is configured."""

    @property
    def state(self) -> CacheAvailability:
        return CacheAvailability.UNAVAILABLE

    async def get_cached(self, key: str) -> Optional[Any]:
        return self.store.get(key)

    async def set_cached(self, key: str, value: Any, ttl_seconds: float) -> None:
        self.store.set(key, value, ttl_seconds)

    async def delete_cached(self, key: str) -> bool:
        return self.store.delete(key)

    async def delete_cached_pattern(self, pattern: KeyPattern) -> int:
        return self.store.delete_pattern(pattern)

    async def clear_all_cached(self) -> None:
        self.store.clear()


class LocalPlusRemoteCache(CacheBackend):
    """
    TTL store with a Redis mirror.

    A failed call degrades to the local result for that call only. The
    availability flag changes only through `initialize()` and
    `check_health()`, which stand in for the client's connect/error events.
    """

    def __init__(self, store: TTLStore, client: RedisCacheClient) -> None:
        super().__init__(store)
        self.client = client
        self._state = CacheAvailability.UNINITIALIZED
        self._health_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> CacheAvailability:
        return self._state

    def _remote_ready(self) -> bool:
        return self._state is CacheAvailability.CONNECTED

    async def initialize(self) -> bool:
        result = await self.client.ping()
        if result.is_success() and result.unwrap():
            self._state = CacheAvailability.CONNECTED
            logger.info("Redis cache initialized")
            return True
        self._state = CacheAvailability.UNAVAILABLE
        logger.warning("Redis not available, falling back to in-memory cache")
        return False

    async def check_health(self) -> CacheAvailability:
        result = await self.client.ping()
        reachable = result.is_success() and bool(result.unwrap())
        if reachable and self._state is not CacheAvailability.CONNECTED:
            logger.info("Redis connection restored")
            self._state = CacheAvailability.CONNECTED
        elif not reachable and self._state is CacheAvailability.CONNECTED:
            logger.error("Redis connection lost, serving from in-memory cache")
            self._state = CacheAvailability.UNAVAILABLE
        return self._state

    def start_health_watch(self, interval_seconds: float) -> asyncio.Task:
        if self._health_task is not None and not self._health_task.done():
            return self._health_task

        @resilient_task(task_name="cache_health_watcher", retry_delay=interval_seconds)
        async def _watch() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                await self.check_health()

        self._health_task = safe_background_task("cache_health_watcher", _watch())
        return self._health_task

    async def get_cached(self, key: str) -> Optional[Any]:
        if not self._remote_ready():
            return self.store.get(key)

        result = await self.client.get(key)
        if result.is_failure():
            return self.store.get(key)
        return result.unwrap()

    async def set_cached(self, key: str, value: Any, ttl_seconds: float) -> None:
        self.store.set(key, value, ttl_seconds)
        if not self._remote_ready() or ttl_seconds <= 0:
            return
        await self.client.set(key, value, ttl_seconds)

    async def delete_cached(self, key: str) -> bool:
        memory_deleted = self.store.delete(key)
        if not self._remote_ready():
            return memory_deleted
        result = await self.client.delete(key)
        if result.is_failure():
            return memory_deleted
        return memory_deleted or result.unwrap()

    async def delete_cached_pattern(self, pattern: KeyPattern) -> int:
        memory_deleted = self.store.delete_pattern(pattern)
        if not self._remote_ready():
            return memory_deleted
        result = await self.client.delete_pattern(pattern)
        if result.is_failure():
            return memory_deleted
        return max(memory_deleted, result.unwrap())

    async def clear_all_cached(self) -> None:
        self.store.clear()
        if self._remote_ready():
            await self.client.clear_all()

    async def close(self) -> None:
        if self._health_task is not None:
            self._health_task.cancel()
            self._health_task = None
        await self.client.close()
        self._state = CacheAvailability.UNAVAILABLE
        logger.info("Redis connection closed")


async def build_cache(
    store: TTLStore,
    *,
    redis_url: str = "",
    socket_timeout: float = 5.0,
    client: Optional[RedisCacheClient] = None,
) -> CacheBackend:
    """
    Select and initialize the cache adapter.

    No URL (and no explicit client) means local-only caching; that is a
    normal operating mode, not an error. A configured but unreachable
    Redis still yields the two-tier adapter in the unavailable state so
    the health watcher can bring it back.
    """
    if client is None:
        if not redis_url:
            logger.info("REDIS_URL not configured, using in-memory cache")
            return LocalOnlyCache(store)
        try:
            client = RedisCacheClient.from_url(redis_url, socket_timeout=socket_timeout)
        except ValueError as exc:
            logger.error("Invalid REDIS_URL, using in-memory cache: %s", exc)
            return LocalOnlyCache(store)

    cache = LocalPlusRemoteCache(store, client)
    await cache.initialize()
    return cache


__all__ = [
    "CacheAvailability",
    "CacheBackend",
    "LocalOnlyCache",
    "LocalPlusRemoteCache",
    "RedisCacheClient",
    "build_cache",
]
