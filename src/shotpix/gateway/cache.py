"""Key-value cache capability injected into the token manager and prompt cache.

Implementations expose atomic ``get``/``set`` on string values with a per-entry
ttl. Callers own serialisation and treat every failure as a miss.
"""
from __future__ import annotations

import time
from typing import Any, Protocol, runtime_checkable

from cachetools import TLRUCache
from redis.asyncio import Redis

from shotpix.gateway.log_config import logger


@runtime_checkable
class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...


class NullCache:
    """Cache that stores nothing; every lookup misses."""

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str, ttl: int) -> None:
        return None


def _entry_expiry(_key: str, value: tuple[str, int], now: float) -> float:
    return now + value[1]


class MemoryCache:
    """Process-local cache with per-entry expiry and bounded size."""

    def __init__(self, maxsize: int = 100, timer: Any = time.monotonic) -> None:
        self._entries: TLRUCache[str, tuple[str, int]] = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, ttl)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Shared cache tier backed by Redis."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def close(self) -> None:
        await self._client.aclose()


async def safe_get(cache: CacheBackend, key: str) -> str | None:
    """Read from ``cache`` and treat a backend failure as a miss."""
    try:
        return await cache.get(key)
    except Exception as exc:
        logger.warning("cache.get failed key=%s error=%s", key, exc)
        return None


async def safe_set(cache: CacheBackend, key: str, value: str, ttl: int) -> bool:
    """Write to ``cache``; a backend failure is logged and reported as False."""
    try:
        await cache.set(key, value, ttl)
    except Exception as exc:
        logger.warning("cache.set failed key=%s error=%s", key, exc)
        return False
    return True
