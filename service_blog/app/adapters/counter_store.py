"""
Counter stores backing the fixed-window rate limiter.

Any store used here must offer atomic increment on arbitrary string keys
plus per-key expiry.
"""

import asyncio
import fnmatch
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import StoreUnavailableError
from shared.logging import get_logger


class CounterStore(ABC):
    """Shared key/value store contract used by the rate limiter."""

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment ``key`` and return the new value."""

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> None:
        """Set a time-to-live on ``key``."""

    async def incr_with_expiry(self, key: str, seconds: int) -> int:
        """Increment ``key`` and make sure it carries a time-to-live.

        The expiry is set on the first increment and re-applied whenever
        the key is found without one.
        """
        count = await self.incr(key)
        if count == 1 or await self.ttl(key) == -1:
            await self.expire(key, seconds)
        return count

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining time-to-live in seconds, -1 without expiry, -2 when absent."""

    @abstractmethod
    async def scan_keys(self, pattern: str) -> List[str]:
        """Return keys matching a glob ``pattern``."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisCounterStore(CounterStore):
    """Counter store backed by Redis.

    The client is built once and connects lazily on the first command.
    Connect and read timeouts keep a dead Redis from hanging requests.
    """

    def __init__(self, redis_url: str, timeout_seconds: float = 2.0,
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger("blog.counter_store")
        self._redis: Optional[redis.Redis] = client

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=self.timeout_seconds,
                socket_timeout=self.timeout_seconds,
            )
        return self._redis

    async def incr(self, key: str) -> int:
        try:
            return int(await self._get_redis().incr(key))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def incr_with_expiry(self, key: str, seconds: int) -> int:
        try:
            redis_client = self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.incr(key)
                pipeline.ttl(key)
                count, ttl = await pipeline.execute()
            if ttl == -1:
                await redis_client.expire(key, seconds)
            return int(count)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def expire(self, key: str, seconds: int) -> None:
        try:
            await self._get_redis().expire(key, seconds)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def ttl(self, key: str) -> int:
        try:
            return int(await self._get_redis().ttl(key))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def scan_keys(self, pattern: str) -> List[str]:
        try:
            return [key async for key in self._get_redis().scan_iter(match=pattern)]
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._get_redis().delete(*keys))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._get_redis().ping())
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError("redis", str(e)) from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis counter store closed")


class InMemoryCounterStore(CounterStore):
    """Process-local counter store for local runs and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = asyncio.Lock()
        # key -> (count, expires_at or None)
        self._entries: Dict[str, Tuple[int, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[int, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def incr(self, key: str) -> int:
        async with self._lock:
            entry = self._live(key)
            count, expires_at = entry if entry is not None else (0, None)
            self._entries[key] = (count + 1, expires_at)
            return count + 1

    async def expire(self, key: str, seconds: int) -> None:
        async with self._lock:
            entry = self._live(key)
            if entry is not None:
                self._entries[key] = (entry[0], self._clock() + seconds)

    async def ttl(self, key: str) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return max(0, int(entry[1] - self._clock()))

    async def scan_keys(self, pattern: str) -> List[str]:
        async with self._lock:
            return [key for key in list(self._entries) if self._live(key) and fnmatch.fnmatchcase(key, pattern)]

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._entries[key]
                    removed += 1
            return removed

    async def get(self, key: str) -> Optional[int]:
        async with self._lock:
            entry = self._live(key)
            return entry[0] if entry is not None else None
