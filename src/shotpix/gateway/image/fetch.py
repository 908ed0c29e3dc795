"""Request-scoped loading of source images.

An ``ImageFetcher`` lives for one logical request. Concurrent lookups of the
same reference share one in-flight task, and ``fetch_many`` keeps the input
order while failing the whole batch on the first error.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import re
from typing import Sequence

import httpx

from shotpix.gateway.errors import GatewayTimeout, InvalidImageError
from shotpix.gateway.image.metadata import sniff_mime_type
from shotpix.gateway.image.schema import ImagePayload
from shotpix.gateway.log_config import logger
from shotpix.gateway.storage import AssetStore

DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)
STORE_PREFIX = "store://"


def decode_data_url(value: str) -> ImagePayload:
    """Decode a ``data:<mime>;base64,<payload>`` URL."""
    match = DATA_URL_RE.match(value.strip())
    if not match:
        raise InvalidImageError("Invalid base64 data URL format")
    try:
        data = base64.b64decode("".join(match.group(2).split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Invalid base64 payload in data URL") from exc
    if not data:
        raise InvalidImageError("Empty image payload in data URL")
    return ImagePayload(data=data, mime_type=match.group(1))


def is_valid_image_ref(ref: str) -> bool:
    if not ref or not ref.strip():
        return False
    if ref.startswith(("https://", "http://", "data:", STORE_PREFIX)):
        return True
    return "://" not in ref


class ImageFetcher:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        store: AssetStore | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._http = http_client
        self._store = store
        self._timeout = timeout
        self._inflight: dict[str, asyncio.Task[ImagePayload]] = {}

    async def _load_url(self, url: str) -> ImagePayload:
        try:
            response = await self._http.get(url, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise GatewayTimeout("Timed out fetching image", debug={"url": url}) from exc
        except httpx.HTTPError as exc:
            raise InvalidImageError("Failed to fetch image", debug={"url": url, "error": str(exc)}) from exc
        if response.status_code >= 400:
            raise InvalidImageError(
                f"Failed to fetch image: {response.status_code}",
                status_code=response.status_code,
                debug={"url": url},
            )
        data = response.content
        if not data:
            raise InvalidImageError("Fetched image is empty", debug={"url": url})
        header_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
        fallback = header_type if header_type.startswith("image/") else "image/jpeg"
        return ImagePayload(data=data, mime_type=sniff_mime_type(data, fallback))

    async def _load_asset(self, key: str) -> ImagePayload:
        if self._store is None:
            raise InvalidImageError("No object store configured for asset references", debug={"asset": key})
        data = await self._store.read(key)
        if not data:
            raise InvalidImageError("Asset not found", debug={"asset": key})
        return ImagePayload(data=data, mime_type=sniff_mime_type(data))

    async def _load(self, ref: str) -> ImagePayload:
        if ref.startswith("data:"):
            return decode_data_url(ref)
        if ref.startswith(("https://", "http://")):
            return await self._load_url(ref)
        return await self._load_asset(ref.removeprefix(STORE_PREFIX))

    def _task_for(self, ref: str) -> asyncio.Task[ImagePayload]:
        if not is_valid_image_ref(ref):
            raise InvalidImageError("Invalid or unsafe image reference", debug={"ref": ref[:200]})
        task = self._inflight.get(ref)
        if task is None:
            task = asyncio.ensure_future(self._load(ref))
            self._inflight[ref] = task
        return task

    async def fetch(self, ref: str) -> ImagePayload:
        return await self._task_for(ref)

    async def fetch_bytes(self, ref: str) -> bytes:
        payload = await self.fetch(ref)
        return payload.data

    async def fetch_many(self, refs: Sequence[str]) -> list[ImagePayload]:
        """Fetch every reference concurrently and return payloads in input order."""
        tasks: list[asyncio.Task[ImagePayload]] = []
        try:
            for ref in refs:
                tasks.append(self._task_for(ref))
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        logger.debug("image_fetch.batch count=%d unique=%d", len(refs), len(set(refs)))
        return list(results)
