"""FastAPI dependency providers for the gateway components."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from shotpix.gateway.cache import CacheBackend, MemoryCache, RedisCache
from shotpix.gateway.config import get_config
from shotpix.gateway.image.fetch import ImageFetcher
from shotpix.gateway.log_config import logger
from shotpix.gateway.service import ProviderGateway
from shotpix.gateway.storage import AssetStore, GCSAssetStore

__all__ = [
    "get_asset_store",
    "get_cache_backend",
    "get_config",
    "get_gateway",
    "get_image_fetcher",
]


@lru_cache()
def get_cache_backend() -> CacheBackend:
    """Redis when ``REDIS_URL`` is set, otherwise a process-local cache."""
    config = get_config()
    if config.redis_url:
        logger.info("dependencies.cache backend=redis")
        return RedisCache.from_url(config.redis_url)
    logger.info("dependencies.cache backend=memory maxsize=%d", config.token_cache_size)
    return MemoryCache(maxsize=config.token_cache_size)


@lru_cache()
def get_asset_store() -> AssetStore | None:
    config = get_config()
    if not config.gcs_bucket_name:
        logger.info("dependencies.store disabled reason=no_bucket")
        return None
    return GCSAssetStore(config.gcs_bucket_name, cache_control=config.result_cache_control)


@lru_cache()
def get_gateway() -> ProviderGateway:
    """Process-wide gateway sharing one HTTP client and cache."""
    return ProviderGateway(get_config(), cache=get_cache_backend(), store=get_asset_store())


def get_image_fetcher(gateway: ProviderGateway = Depends(get_gateway)) -> ImageFetcher:
    """A fresh fetcher per request so memoised source images never outlive it."""
    return gateway.image_fetcher()
