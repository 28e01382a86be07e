"""Base cache interface and in-memory implementation."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K")  # Key type
V = TypeVar("V")  # Value type


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry with value and expiry metadata."""

    value: V
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now > self.created_at + self.ttl_seconds


class BaseCache(ABC, Generic[K, V]):
    """Async key/value cache with per-entry TTL."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Get a value, None if missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: float = 3600) -> None:
        pass

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Delete a value. Returns True if it was there."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class InMemoryCache(BaseCache[K, V]):
    """Dict-backed cache, per process only.

    Hey future me - this is gone after a restart. That's fine for plans: a lost plan
    just means the client has to POST /plan again. Batches are what must survive, and
    those live in the database. The clock is injectable so TTL tests don't sleep.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._cache: dict[K, CacheEntry[V]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    # Expired entries are evicted on read, so get() does mutate the dict
    async def get(self, key: K) -> V | None:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None
            return entry.value

    async def set(self, key: K, value: V, ttl_seconds: float = 3600) -> None:
        async with self._lock:
            self._cache[key] = CacheEntry(
                value=value, created_at=self._clock(), ttl_seconds=ttl_seconds
            )

    async def delete(self, key: K) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def cleanup_expired(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                del self._cache[key]
            return len(expired)

    # Not locked: stats are for health checks, a slightly stale count is fine
    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        total = len(self._cache)
        expired = sum(1 for entry in self._cache.values() if entry.is_expired(now))
        return {
            "total_entries": total,
            "active_entries": total - expired,
            "expired_entries": expired,
        }
