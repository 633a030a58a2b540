"""Shared cache store.

A closed set of key-value, sorted-set and list operations used for rate-limit
windows, penalties, session mirroring and classification memoization. Every
call is an await point.
"""

import fnmatch
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import redis.asyncio as redis

from switchboard.logging_config import get_logger

logger = get_logger("cache_store")


class CacheStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def incr(self, key: str) -> int: ...

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: float) -> bool: ...

    @abstractmethod
    async def zadd(self, key: str, score: float, member: str) -> None: ...

    @abstractmethod
    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[tuple[str, float]]:
        """Members with scores in [min_score, max_score], ascending by score."""

    @abstractmethod
    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int: ...

    @abstractmethod
    async def lpush(self, key: str, value: str) -> int: ...

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]: ...

    @abstractmethod
    async def ltrim(self, key: str, start: int, stop: int) -> None: ...

    @abstractmethod
    async def scan_keys(self, pattern: str) -> list[str]: ...

    async def close(self) -> None:
        return None


class RedisCacheStore(CacheStore):
    def __init__(self, url: str, socket_timeout: float = 2.0, client: Optional[redis.Redis] = None):
        self.url = url
        self.client = client or redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        if ttl_seconds:
            await self.client.set(key, value, px=int(ttl_seconds * 1000))
        else:
            await self.client.set(key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        return bool(await self.client.pexpire(key, int(ttl_seconds * 1000)))

    async def zadd(self, key: str, score: float, member: str) -> None:
        await self.client.zadd(key, {member: score})

    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[tuple[str, float]]:
        rows = await self.client.zrangebyscore(key, min_score, max_score, withscores=True)
        return [(member, float(score)) for member, score in rows]

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        return int(await self.client.zremrangebyscore(key, min_score, max_score))

    async def lpush(self, key: str, value: str) -> int:
        return int(await self.client.lpush(key, value))

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return list(await self.client.lrange(key, start, stop))

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        await self.client.ltrim(key, start, stop)

    async def scan_keys(self, pattern: str) -> list[str]:
        return [key async for key in self.client.scan_iter(match=pattern)]

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryCacheStore(CacheStore):
    """Process-local store with TTL support, used in tests and local runs."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._values: dict[str, Any] = {}
        self._expires_at: dict[str, float] = {}

    def _alive(self, key: str) -> bool:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
        return key in self._values

    def _typed(self, key: str, factory):
        if not self._alive(key):
            self._values[key] = factory()
        value = self._values[key]
        if not isinstance(value, factory):
            raise TypeError(f"WRONGTYPE operation against key {key}")
        return value

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        value = self._values[key]
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        self._values[key] = str(value)
        if ttl_seconds:
            self._expires_at[key] = self._clock() + ttl_seconds
        else:
            self._expires_at.pop(key, None)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
        return removed

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def incr(self, key: str) -> int:
        current = int(self._values[key]) if self._alive(key) else 0
        current += 1
        self._values[key] = str(current)
        return current

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        if not self._alive(key):
            return False
        self._expires_at[key] = self._clock() + ttl_seconds
        return True

    async def zadd(self, key: str, score: float, member: str) -> None:
        self._typed(key, dict)[member] = float(score)

    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[tuple[str, float]]:
        if not self._alive(key):
            return []
        members = self._typed(key, dict)
        rows = [(m, s) for m, s in members.items() if min_score <= s <= max_score]
        return sorted(rows, key=lambda row: row[1])

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        if not self._alive(key):
            return 0
        members = self._typed(key, dict)
        doomed = [m for m, s in members.items() if min_score <= s <= max_score]
        for member in doomed:
            del members[member]
        return len(doomed)

    async def lpush(self, key: str, value: str) -> int:
        items = self._typed(key, list)
        items.insert(0, str(value))
        return len(items)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        if not self._alive(key):
            return []
        items = self._typed(key, list)
        end = None if stop == -1 else stop + 1
        return list(items[start:end])

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        if not self._alive(key):
            return
        items = self._typed(key, list)
        end = None if stop == -1 else stop + 1
        items[:] = items[start:end]

    async def scan_keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._values) if self._alive(key) and fnmatch.fnmatchcase(key, pattern)]


def build_cache_store(backend: str, url: str, socket_timeout: float = 2.0) -> CacheStore:
    if backend == "memory":
        logger.warning("Using in-memory cache store; state is not shared between processes")
        return InMemoryCacheStore()
    return RedisCacheStore(url, socket_timeout=socket_timeout)


async def get_json(cache: CacheStore, key: str) -> Optional[Any]:
    """Advisory read: returns None on miss, bad payload or cache failure."""
    try:
        raw = await cache.get(key)
    except Exception as exc:
        logger.warning(f"Cache read failed for {key}: {exc}")
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Discarding malformed cache entry {key}")
        return None


async def set_json(cache: CacheStore, key: str, value: Any, ttl_seconds: Optional[float] = None) -> bool:
    """Advisory write: failures are logged, never raised."""
    try:
        await cache.set(key, json.dumps(value, default=str), ttl_seconds=ttl_seconds)
        return True
    except Exception as exc:
        logger.warning(f"Cache write failed for {key}: {exc}")
        return False
