"""Shared fakes and builders for the gateway tests."""
from __future__ import annotations

import io
import json
from typing import Any

import httpx
from PIL import Image


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


def make_image_bytes(width: int, height: int, image_format: str = "JPEG", exif_orientation: int | None = None) -> bytes:
    image = Image.new("RGB", (width, height), color=(120, 80, 200))
    buffer = io.BytesIO()
    save_kwargs: dict[str, Any] = {}
    if exif_orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = exif_orientation
        save_kwargs["exif"] = exif
    image.save(buffer, format=image_format, **save_kwargs)
    return buffer.getvalue()


class FakeCache:
    """In-memory ``CacheBackend`` that records calls and can be told to fail."""

    def __init__(self, *, fail_get: bool = False, fail_set: bool = False) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.get_calls = 0
        self.set_calls = 0

    async def get(self, key: str) -> str | None:
        self.get_calls += 1
        if self.fail_get:
            raise ConnectionError("cache down")
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        self.set_calls += 1
        if self.fail_set:
            raise ConnectionError("cache down")
        self.values[key] = value
        self.ttls[key] = ttl


class FakeAssetStore:
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.fail_metadata = False
        self.metadata_reads = 0

    async def read(self, key: str) -> bytes | None:
        entry = self.objects.get(key)
        return entry[0] if entry else None

    async def write(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = (data, content_type)

    async def read_metadata(self, key: str) -> dict[str, str] | None:
        self.metadata_reads += 1
        if self.fail_metadata:
            raise ConnectionError("store down")
        if key not in self.objects and key not in self.metadata:
            return None
        return dict(self.metadata.get(key, {}))

    async def write_metadata(self, key: str, metadata: dict[str, str]) -> None:
        if self.fail_metadata:
            raise ConnectionError("store down")
        self.metadata.setdefault(key, {}).update(metadata)
