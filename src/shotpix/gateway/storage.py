"""Object store collaborator used for source images, results and prompt metadata.

Objects live under plain keys such as ``presets/{id}.jpg`` or
``results/{id}.jpg``. Custom metadata attached to an object doubles as the
durable tier of the prompt cache.
"""
from __future__ import annotations

import asyncio
import secrets
from typing import Protocol, runtime_checkable

from google.cloud import storage

from shotpix.gateway.log_config import logger

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


@runtime_checkable
class AssetStore(Protocol):
    async def read(self, key: str) -> bytes | None: ...

    async def write(self, key: str, data: bytes, content_type: str) -> None: ...

    async def read_metadata(self, key: str) -> dict[str, str] | None: ...

    async def write_metadata(self, key: str, metadata: dict[str, str]) -> None: ...


def content_type_to_extension(content_type: str) -> str:
    return _EXTENSIONS.get(content_type.lower(), "jpg")


def new_result_key(content_type: str) -> str:
    return f"results/{secrets.token_urlsafe(12)}.{content_type_to_extension(content_type)}"


class GCSAssetStore:
    """Google Cloud Storage implementation; blocking SDK calls run in a worker thread."""

    def __init__(
        self,
        bucket_name: str,
        *,
        client: storage.Client | None = None,
        cache_control: str | None = None,
    ) -> None:
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket_name)
        self._cache_control = cache_control

    def _read(self, key: str) -> bytes | None:
        blob = self._bucket.blob(key)
        if not blob.exists():
            return None
        return blob.download_as_bytes()

    def _write(self, key: str, data: bytes, content_type: str) -> None:
        blob = self._bucket.blob(key)
        if self._cache_control:
            blob.cache_control = self._cache_control
        blob.upload_from_string(data, content_type=content_type)

    def _read_metadata(self, key: str) -> dict[str, str] | None:
        blob = self._bucket.get_blob(key)
        if blob is None:
            return None
        return dict(blob.metadata or {})

    def _write_metadata(self, key: str, metadata: dict[str, str]) -> None:
        blob = self._bucket.get_blob(key)
        if blob is None:
            raise FileNotFoundError(f"Asset not found: {key}")
        blob.metadata = {**(blob.metadata or {}), **metadata}
        blob.patch()

    async def read(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read, key)

    async def write(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._write, key, data, content_type)
        logger.debug("storage.write key=%s contentType=%s bytes=%d", key, content_type, len(data))

    async def read_metadata(self, key: str) -> dict[str, str] | None:
        return await asyncio.to_thread(self._read_metadata, key)

    async def write_metadata(self, key: str, metadata: dict[str, str]) -> None:
        await asyncio.to_thread(self._write_metadata, key, metadata)


async def store_result(store: AssetStore, data: bytes, content_type: str) -> str:
    """Persist generated bytes under a fresh ``results/`` key and return the key."""
    key = new_result_key(content_type)
    await store.write(key, data, content_type)
    return key
