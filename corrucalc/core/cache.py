"""Shared cache abstraction for process-wide mutable state.

The rate limiter counters and the credential cache are the only shared mutable
state in CorruCalc. Both go through a `Cache` built once by the app factory and
passed down as a dependency.

Backends:
- MemoryCache: single-process, guarded by an asyncio lock
- RedisCache: multi-process, atomic INCR/EXPIRE pipeline
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class Cache(ABC):
    """Key/value cache with TTLs and atomic windowed counters."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached JSON-compatible value or None if missing/expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-compatible value for `ttl_seconds`."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key (no error when absent)."""

    @abstractmethod
    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Atomically increment the counter for the current window.

        Creates the counter with value 1 and a fresh window when the key is
        missing or its window has elapsed.

        Returns:
            (count after increment, window reset time as epoch seconds)
        """

    async def close(self) -> None:
        return None


class MemoryCache(Cache):
    """In-process cache. Safe under concurrent coroutines of one event loop.

    Args:
        clock: Epoch-seconds clock, injectable for tests
        purge_every: Writes between sweeps of expired entries
    """

    def __init__(self, clock: Callable[[], float] = time.time, purge_every: int = 1000):
        self.clock = clock
        self.purge_every = purge_every
        self._writes = 0
        self._values: dict[str, tuple[Any, float]] = {}
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self.clock() >= expires_at:
                del self._values[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            self._count_write()
            self._values[key] = (value, self.clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)
            self._counters.pop(key, None)

    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, float]:
        async with self._lock:
            self._count_write()
            now = self.clock()
            entry = self._counters.get(key)
            if entry is None or now >= entry[1]:
                entry = (1, now + window_seconds)
            else:
                entry = (entry[0] + 1, entry[1])
            self._counters[key] = entry
            return entry

    def _count_write(self) -> None:
        # Every distinct caller adds a key; sweep so the maps stay bounded
        self._writes += 1
        if self._writes >= self.purge_every:
            self._writes = 0
            removed = self.purge_expired()
            if removed:
                logger.debug("memory_cache_purged removed=%s", removed)

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self.clock()
        stale_values = [k for k, (_, exp) in self._values.items() if now >= exp]
        stale_counters = [k for k, (_, exp) in self._counters.items() if now >= exp]
        for k in stale_values:
            del self._values[k]
        for k in stale_counters:
            del self._counters[k]
        return len(stale_values) + len(stale_counters)


class RedisCache(Cache):
    """Redis-backed cache for multi-worker deployments."""

    def __init__(self, client: redis.Redis, prefix: str = "corrucalc:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.client.set(self._key(key), json.dumps(value), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, float]:
        full_key = self._key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, window_seconds, nx=True)
            pipe.pttl(full_key)
            count, _, pttl = await pipe.execute()
        ttl_ms = pttl if pttl and pttl > 0 else window_seconds * 1000
        return int(count), time.time() + ttl_ms / 1000

    async def close(self) -> None:
        await self.client.aclose()


def build_cache(backend: str, redis_url: str) -> Cache:
    """Create the configured cache backend."""
    if backend == "redis":
        logger.info("cache_backend redis url=%s", redis_url)
        return RedisCache.from_url(redis_url)
    return MemoryCache()
