"""Cache stores for discovery documents and signing keys.

The provider never owns cache state itself: a ``CacheStore`` is injected at
construction and holds the discovery document and JWKS snapshots with a
per-entry TTL. Expiry is entirely the store's concern.

Backends:
- ``MemoryCacheStore``: in-process dict with TTL, for single-process apps
  and tests
- ``RedisCacheStore``: Redis-backed store shared between processes

Example:
    cache = RedisCacheStore(redis_url="redis://localhost:6379/0")
    await cache.init()

    await cache.set("some-key", {"issuer": "https://idp.example.com/"}, 86400)
    document = await cache.get("some-key")
"""

import asyncio
import copy
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter, Histogram
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from oidc_rp.infra.observability.metrics import _registry

logger = logging.getLogger(__name__)

# Metrics for cache backend operations
cache_store_operations_total = Counter(
    "oidc_rp_cache_store_operations_total",
    "Total number of cache store operations",
    ["backend", "operation", "status"],
    registry=_registry,
)

cache_store_operation_duration_seconds = Histogram(
    "oidc_rp_cache_store_operation_duration_seconds",
    "Duration of cache store operations in seconds",
    ["backend", "operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
    registry=_registry,
)


class CacheStoreError(Exception):
    """Base exception for cache store backend errors."""


class CacheStore(ABC):
    """Abstract key/value store with per-entry TTL.

    Keys are opaque strings; values are JSON-compatible structured data
    (mappings or lists). Implementations must be safe for concurrent use.
    Subclasses only need ``get`` and ``set``; ``exists`` is derived from ``get``.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve a value.

        Args:
            key: Cache key

        Returns:
            Stored value, or None on a miss (absent or expired)

        Raises:
            CacheStoreError: If the backend fails
        """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: Cache key
            value: JSON-compatible value
            ttl_seconds: Time-to-live in seconds (0 means do not cache)

        Raises:
            CacheStoreError: If the backend fails
        """

    async def exists(self, key: str) -> bool:
        """Check whether a live entry exists for key.

        Raises:
            CacheStoreError: If the backend fails
        """
        return await self.get(key) is not None


@dataclass
class CacheEntry:
    """In-memory cache entry."""

    value: Any
    expires_at: float


class MemoryCacheStore(CacheStore):
    """In-process cache store with TTL.

    Values are deep-copied on the way in and out so cached snapshots cannot
    be mutated by callers.

    Example:
        cache = MemoryCacheStore()
        await cache.set("key", {"a": 1}, ttl_seconds=60)
        value = await cache.get("key")
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize memory cache store.

        Args:
            clock: Monotonic time source (injectable for tests)
        """
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                cache_store_operations_total.labels(
                    backend="memory", operation="get", status="miss"
                ).inc()
                return None

            if self._clock() >= entry.expires_at:
                del self._entries[key]
                cache_store_operations_total.labels(
                    backend="memory", operation="get", status="miss"
                ).inc()
                logger.debug("Cache entry expired", extra={"cache_key": key})
                return None

            cache_store_operations_total.labels(
                backend="memory", operation="get", status="hit"
            ).inc()
            return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            if ttl_seconds <= 0:
                self._entries.pop(key, None)
                return

            self._entries[key] = CacheEntry(
                value=copy.deepcopy(value),
                expires_at=self._clock() + ttl_seconds,
            )
            cache_store_operations_total.labels(
                backend="memory", operation="set", status="success"
            ).inc()


class RedisCacheStore(CacheStore):
    """Redis-backed cache store for multi-process deployments.

    Values are stored as JSON strings with ``SETEX`` so Redis handles expiry.

    Example:
        store = RedisCacheStore(
            redis_url="redis://localhost:6379/0",
            key_prefix="oidc-rp:",
        )
        await store.init()
    """

    def __init__(
        self,
        redis_url: str,
        pool_size: int = 10,
        timeout_seconds: float = 5.0,
        key_prefix: str = "oidc-rp:",
    ) -> None:
        """Initialize Redis cache store.

        Args:
            redis_url: Redis connection URL
            pool_size: Connection pool size
            timeout_seconds: Operation timeout
            key_prefix: Redis key prefix for cache entries
        """
        self.redis_url = redis_url
        self.pool_size = pool_size
        self.timeout_seconds = timeout_seconds
        self.key_prefix = key_prefix

        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    async def init(self) -> None:
        """Initialize Redis connection pool and client.

        Raises:
            CacheStoreError: If connection fails
        """
        try:
            self._pool = ConnectionPool.from_url(
                self.redis_url,
                max_connections=self.pool_size,
                socket_timeout=self.timeout_seconds,
                socket_connect_timeout=self.timeout_seconds,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()  # type: ignore[misc]
            logger.info("Redis cache store initialized", extra={"url": self.redis_url})
        except RedisError as e:
            raise CacheStoreError(f"Failed to initialize Redis connection: {e}") from e

    async def close(self) -> None:
        """Close Redis connection and cleanup pool."""
        client = self._client
        pool = self._pool
        self._client = None
        self._pool = None

        if client is not None:
            await client.aclose()
        if pool is not None:
            await pool.aclose()

        logger.info("Redis cache store closed")

    def _redis_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _require_client(self) -> Redis:
        if not self._client:
            raise CacheStoreError("Cache store not initialized. Call init() first.")
        return self._client

    async def get(self, key: str) -> Any | None:
        client = self._require_client()

        try:
            with cache_store_operation_duration_seconds.labels(
                backend="redis", operation="get"
            ).time():
                raw = await client.get(self._redis_key(key))

            if raw is None:
                cache_store_operations_total.labels(
                    backend="redis", operation="get", status="miss"
                ).inc()
                return None

            value = json.loads(raw)
            cache_store_operations_total.labels(
                backend="redis", operation="get", status="hit"
            ).inc()
            return value

        except (RedisError, json.JSONDecodeError) as e:
            cache_store_operations_total.labels(
                backend="redis", operation="get", status="error"
            ).inc()
            raise CacheStoreError(f"Failed to get cache entry {key}: {e}") from e

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        client = self._require_client()

        try:
            with cache_store_operation_duration_seconds.labels(
                backend="redis", operation="set"
            ).time():
                if ttl_seconds <= 0:
                    await client.delete(self._redis_key(key))
                else:
                    await client.setex(self._redis_key(key), ttl_seconds, json.dumps(value))

            cache_store_operations_total.labels(
                backend="redis", operation="set", status="success"
            ).inc()

        except (RedisError, TypeError, ValueError) as e:
            cache_store_operations_total.labels(
                backend="redis", operation="set", status="error"
            ).inc()
            raise CacheStoreError(f"Failed to set cache entry {key}: {e}") from e


def create_cache_store(
    backend: str,
    redis_url: str | None = None,
    key_prefix: str = "oidc-rp:",
) -> CacheStore:
    """Create a cache store for the configured backend.

    The Redis store still needs ``await store.init()`` before use.

    Args:
        backend: "memory" or "redis"
        redis_url: Redis URL (required for redis)
        key_prefix: Redis key prefix

    Raises:
        ValueError: If the backend is unknown or redis_url is missing
    """
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis cache backend")
        return RedisCacheStore(redis_url=redis_url, key_prefix=key_prefix)
    raise ValueError(f"Unknown cache backend: {backend}")
