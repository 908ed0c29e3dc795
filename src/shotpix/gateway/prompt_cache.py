"""Two-tier cache for generated prompts.

The fast tier is a ``CacheBackend`` keyed ``prompt_cache:{key}``. The durable
tier is the ``prompt_json`` metadata field of the stored asset at ``key``.
Reads try the fast tier, then the durable tier, and copy durable hits back
into the fast tier. A failing tier behaves like a miss.
"""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from shotpix.gateway.cache import CacheBackend, NullCache, safe_get, safe_set
from shotpix.gateway.log_config import logger
from shotpix.gateway.storage import AssetStore

PROMPT_METADATA_FIELD = "prompt_json"
DEFAULT_PROMPT_TTL = 31536000

PromptGenerator = Callable[[], Awaitable[dict[str, Any]]]


def fast_key(key: str) -> str:
    return f"prompt_cache:{key}"


def _decode(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


class PromptCache:
    def __init__(
        self,
        fast: CacheBackend | None = None,
        store: AssetStore | None = None,
        ttl: int = DEFAULT_PROMPT_TTL,
    ) -> None:
        self._fast = fast or NullCache()
        self._store = store
        self._ttl = ttl

    async def _read_durable(self, key: str) -> dict[str, Any] | None:
        if self._store is None:
            return None
        try:
            metadata = await self._store.read_metadata(key)
        except Exception as exc:
            logger.warning("prompt_cache.durable read failed key=%s error=%s", key, exc)
            return None
        if not metadata:
            return None
        return _decode(metadata.get(PROMPT_METADATA_FIELD))

    async def _write_durable(self, key: str, encoded: str) -> bool:
        if self._store is None:
            return False
        try:
            await self._store.write_metadata(key, {PROMPT_METADATA_FIELD: encoded})
        except Exception as exc:
            logger.warning("prompt_cache.durable write failed key=%s error=%s", key, exc)
            return False
        return True

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the cached prompt for ``key`` from whichever tier has it."""
        payload = _decode(await safe_get(self._fast, fast_key(key)))
        if payload is not None:
            logger.debug("prompt_cache.hit tier=fast key=%s", key)
            return payload

        payload = await self._read_durable(key)
        if payload is None:
            logger.debug("prompt_cache.miss key=%s", key)
            return None

        logger.debug("prompt_cache.hit tier=durable key=%s", key)
        await safe_set(self._fast, fast_key(key), json.dumps(payload, ensure_ascii=False), self._ttl)
        return payload

    async def put(self, key: str, payload: dict[str, Any], ttl: int | None = None) -> None:
        """Write ``payload`` to both tiers, overwriting any previous entry."""
        encoded = json.dumps(payload, ensure_ascii=False)
        fast_ok = await safe_set(self._fast, fast_key(key), encoded, ttl or self._ttl)
        durable_ok = await self._write_durable(key, encoded)
        logger.info("prompt_cache.stored key=%s fast=%s durable=%s", key, fast_ok, durable_ok)

    async def resolve(self, key: str, generate: PromptGenerator) -> dict[str, Any]:
        """Return the cached prompt or generate, store and return a new one."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        payload = await generate()
        await self.put(key, payload)
        return payload
