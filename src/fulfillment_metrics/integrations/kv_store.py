"""Key-value persistence for cached daily results.

`KeyValueStore` is the storage contract (string values). `InMemoryStore`
backs tests and single-process runs, `RedisStore` persists across
restarts. `JsonCache` adds JSON (de)serialization and turns backend
failures into logged cache misses.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.integrations.circuit_breaker import CacheCircuitBreaker

logger = setup_logger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the cache backend is bypassed by the circuit breaker."""


class KeyValueStore(ABC):
    """Abstract string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if missing."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete key if present."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryStore(KeyValueStore):
    """Dict-backed store. Contents live as long as the instance."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class RedisStore(KeyValueStore):
    """Redis-backed store.

    Features:
    - Async Redis connection pool
    - Key namespacing via prefix
    - Circuit breaker to bypass an unreachable Redis
    """

    def __init__(
        self,
        host: str = "redis",
        port: int = 6379,
        db: int = 0,
        prefix: str = "fulfillment:",
        client: Optional[redis.Redis] = None,
        circuit_breaker: Optional[CacheCircuitBreaker] = None,
    ):
        """Initialize Redis store.

        Args:
            host: Redis host
            port: Redis port
            db: Redis database number
            prefix: Namespace prepended to every key
            client: Pre-built Redis client (skips pool creation)
            circuit_breaker: Optional circuit breaker instance
        """
        self.prefix = prefix
        self.circuit_breaker = circuit_breaker or CacheCircuitBreaker()

        if client is None:
            pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                decode_responses=True,
                max_connections=10,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                retry_on_timeout=True,
            )
            client = redis.Redis(connection_pool=pool)
            logger.info(f"Redis cache initialized: {host}:{port}/{db}")

        self.redis = client

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def _call(self, operation: str, coro_factory):
        if not self.circuit_breaker.should_attempt():
            raise CacheUnavailableError(f"Circuit breaker open, skipping Redis {operation}")

        try:
            result = await coro_factory()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            self.circuit_breaker.record_failure()
            raise CacheUnavailableError(f"Redis {operation} failed: {e}") from e

        self.circuit_breaker.record_success()
        return result

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", lambda: self.redis.get(self._key(key)))

    async def set(self, key: str, value: str) -> None:
        await self._call("set", lambda: self.redis.set(self._key(key), value))

    async def remove(self, key: str) -> None:
        await self._call("delete", lambda: self.redis.delete(self._key(key)))

    async def keys(self, prefix: str = "") -> List[str]:
        async def scan():
            found = []
            async for key in self.redis.scan_iter(match=f"{self._key(prefix)}*"):
                found.append(key[len(self.prefix):])
            return found

        return await self._call("scan", scan)

    async def health_check(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        try:
            await self.redis.aclose()
            logger.info("Redis cache connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")


class JsonCache:
    """JSON view over a KeyValueStore.

    Read failures and corrupted entries behave as misses, write failures
    are logged and reported as False. Callers proceed with fresh
    computation either way.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Corrupted cache entry {key}, discarding")
            await self.remove(key)
            return None

    async def set_json(self, key: str, value: Any) -> bool:
        try:
            await self.store.set(key, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    async def get_text(self, key: str) -> Optional[str]:
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set_text(self, key: str, value: str) -> bool:
        try:
            await self.store.set(key, value)
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    async def remove(self, key: str) -> bool:
        try:
            await self.store.remove(key)
            return True
        except Exception as e:
            logger.warning(f"Cache remove failed for {key}: {e}")
            return False

    async def remove_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns the number removed."""
        try:
            keys = await self.store.keys(prefix)
        except Exception as e:
            logger.warning(f"Cache scan failed for {prefix}*: {e}")
            return 0

        removed = 0
        for key in keys:
            if await self.remove(key):
                removed += 1
        return removed


def create_store(backend: str, **redis_options) -> KeyValueStore:
    """Build the configured store ("redis" or "memory")."""
    if backend == "memory":
        logger.info("Using in-memory cache backend")
        return InMemoryStore()
    if backend == "redis":
        return RedisStore(**redis_options)
    raise ValueError(f"Unknown cache backend: {backend}")
