"""
Counter stores for the fixed-window limiter.

A store executes the two atomic batches of the counter protocol:

- reserve: GET counter, PTTL counter, SET lock NX, PEXPIRE lock
- commit: DEL lock, SET counter PX ttl
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import RateLimitSettings
from shared.errors import ConfigurationError, StoreError
from shared.logging import get_logger

LOCK_VALUE = 1

# PTTL replies for a missing key and for a key without expiry
TTL_MISSING = -2
TTL_PERSISTENT = -1


@dataclass(frozen=True)
class CounterSnapshot:
    """Result of a reserve batch.

    Attributes:
        value: Counter value, or None when the key is absent.
        ttl_ms: Remaining lifetime of the counter in ms (negative if none).
        locked: Whether this caller acquired the lock key.
    """

    value: Optional[int]
    ttl_ms: int
    locked: bool

    @property
    def alive(self) -> bool:
        return self.ttl_ms > 0


class CounterStore(ABC):
    """Interface the limiter needs from a shared key-value store."""

    @abstractmethod
    async def reserve(self, storage_key: str, lock_key: str, lock_ttl_ms: int) -> CounterSnapshot:
        """Read the counter and try to take the lock, in one atomic batch."""
        raise NotImplementedError

    @abstractmethod
    async def commit(self, storage_key: str, lock_key: str, value: int, ttl_ms: int) -> None:
        """Release the lock and persist the counter, in one atomic batch."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release store resources."""


def _decode_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return int(value)


class RedisCounterStore(CounterStore):
    """Counter store backed by Redis transactions (MULTI/EXEC)."""

    def __init__(self,
                 redis_url: Optional[str] = None,
                 client: Optional[redis.Redis] = None,
                 socket_timeout: float = 5.0):
        if client is None and not redis_url:
            raise ConfigurationError("RedisCounterStore requires a redis_url or a client")
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("ratelimiter.store.redis")
        self._redis: Optional[redis.Redis] = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "RedisCounterStore":
        """Build a store from limiter settings."""
        return cls(redis_url=settings.redis_url, socket_timeout=settings.socket_timeout)

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
            )
        return self._redis

    async def reserve(self, storage_key: str, lock_key: str, lock_ttl_ms: int) -> CounterSnapshot:
        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.get(storage_key)
                pipeline.pttl(storage_key)
                pipeline.set(lock_key, LOCK_VALUE, nx=True)
                # Always refresh the lock expiry in case the holder crashes
                pipeline.pexpire(lock_key, lock_ttl_ms)
                value, ttl, acquired, _ = await pipeline.execute()
        except RedisError as e:
            self.logger.error("Counter reserve failed", storage_key=storage_key, error=str(e))
            raise StoreError(f"Reserve failed: {e}", details={"storage_key": storage_key}) from e

        try:
            counter = _decode_int(value)
        except ValueError as e:
            self.logger.error("Counter value is not an integer", storage_key=storage_key, value=repr(value))
            raise StoreError(
                f"Counter at '{storage_key}' is not an integer",
                details={"storage_key": storage_key}
            ) from e

        return CounterSnapshot(
            value=counter,
            ttl_ms=int(ttl) if ttl is not None else TTL_MISSING,
            locked=bool(acquired)
        )

    async def commit(self, storage_key: str, lock_key: str, value: int, ttl_ms: int) -> None:
        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.delete(lock_key)
                pipeline.set(storage_key, value, px=ttl_ms)
                await pipeline.execute()
        except RedisError as e:
            self.logger.error("Counter commit failed", storage_key=storage_key, error=str(e))
            raise StoreError(f"Commit failed: {e}", details={"storage_key": storage_key}) from e

    async def close(self) -> None:
        """Close the Redis connection if this store created it."""
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis counter store closed")


class InMemoryCounterStore(CounterStore):
    """Process-local counter store with Redis expiry semantics.

    Only limiters in the same process share this store, so it cannot
    enforce a limit across workers. Useful for single-process deployments
    and tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time, purge_interval_ms: int = 1000):
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at_ms or None)
        self._data: Dict[str, Tuple[Any, Optional[int]]] = {}
        self.purge_interval_ms = purge_interval_ms
        self._last_purge_ms = self._now_ms()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _now_ms(self) -> int:
        # Millisecond resolution, like Redis expiries
        return int(round(self._clock() * 1000))

    def _purge_expired(self) -> None:
        """Drop expired keys, at most once per purge interval."""
        now = self._now_ms()
        if now - self._last_purge_ms < self.purge_interval_ms:
            return
        self._last_purge_ms = now
        expired = [key for key, (_, expires_at) in self._data.items()
                   if expires_at is not None and expires_at <= now]
        for key in expired:
            del self._data[key]

    def _get(self, key: str) -> Optional[Tuple[Any, Optional[int]]]:
        entry = self._data.get(key)
        if entry is not None and entry[1] is not None and entry[1] <= self._now_ms():
            del self._data[key]
            return None
        return entry

    def _pttl(self, key: str) -> int:
        entry = self._get(key)
        if entry is None:
            return TTL_MISSING
        if entry[1] is None:
            return TTL_PERSISTENT
        return entry[1] - self._now_ms()

    def get_value(self, key: str) -> Optional[int]:
        """Current counter value, honouring expiry."""
        with self._lock:
            entry = self._get(key)
            return None if entry is None else int(entry[0])

    def pttl(self, key: str) -> int:
        """Remaining lifetime of a key in ms, Redis style."""
        with self._lock:
            return self._pttl(key)

    async def reserve(self, storage_key: str, lock_key: str, lock_ttl_ms: int) -> CounterSnapshot:
        with self._lock:
            self._purge_expired()
            entry = self._get(storage_key)
            ttl = self._pttl(storage_key)
            acquired = self._get(lock_key) is None
            lock_value = LOCK_VALUE if acquired else self._data[lock_key][0]
            self._data[lock_key] = (lock_value, self._now_ms() + lock_ttl_ms)

        return CounterSnapshot(
            value=None if entry is None else int(entry[0]),
            ttl_ms=ttl,
            locked=acquired
        )

    async def commit(self, storage_key: str, lock_key: str, value: int, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise StoreError("invalid expire time in 'set' command", details={"storage_key": storage_key})
        with self._lock:
            self._data.pop(lock_key, None)
            self._data[storage_key] = (value, self._now_ms() + ttl_ms)

    async def close(self) -> None:
        with self._lock:
            self._data.clear()
