"""Recover pixel dimensions and EXIF orientation from raw image bytes.

Only headers are read: JPEG frame and APP1 segments, the PNG IHDR chunk and
the first WebP sub-chunk. Anything else yields ``None``, which callers treat
as "dimensions unknown".
"""
from __future__ import annotations

import struct
from typing import Literal

from pydantic import BaseModel, Field

ImageFormat = Literal["jpeg", "png", "webp"]

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SOI = b"\xff\xd8"

JPEG_MAX_DIMENSION = 0xFFFF
PNG_MAX_DIMENSION = 0x7FFFFFFF
VP8_MAX_DIMENSION = 0x3FFF
VP8L_MAX_DIMENSION = 0x4000
VP8X_MAX_DIMENSION = 0x1000000

# Thumbnails embedded next to the main frame are usually well below this.
PRIMARY_FRAME_MIN_DIMENSION = 300

SOF_MARKERS = frozenset(
    [0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF]
)
STANDALONE_MARKERS = frozenset([0x01, 0xD8, *range(0xD0, 0xD8)])
APP1_MARKER = 0xE1
SOS_MARKER = 0xDA
EOI_MARKER = 0xD9
ORIENTATION_TAG = 0x0112

MIME_TYPES: dict[str, str] = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


class ImageMetadata(BaseModel):
    width: int = Field(..., gt=0, description="Display width (after EXIF rotation)")
    height: int = Field(..., gt=0, description="Display height (after EXIF rotation)")
    raw_width: int = Field(..., gt=0)
    raw_height: int = Field(..., gt=0)
    orientation: int = Field(default=1, ge=1, le=8)
    rotated: bool = False
    format: ImageFormat

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.format]


def _build(raw_width: int, raw_height: int, orientation: int, image_format: ImageFormat) -> ImageMetadata:
    rotated = 5 <= orientation <= 8
    return ImageMetadata(
        width=raw_height if rotated else raw_width,
        height=raw_width if rotated else raw_height,
        raw_width=raw_width,
        raw_height=raw_height,
        orientation=orientation,
        rotated=rotated,
        format=image_format,
    )


def _within(width: int, height: int, maximum: int) -> bool:
    return 0 < width <= maximum and 0 < height <= maximum


def read_exif_orientation(segment: bytes) -> int:
    """Read tag 0x0112 from an APP1 payload (``Exif\\0\\0`` + TIFF); default 1."""
    if not segment.startswith(b"Exif\x00\x00"):
        return 1
    tiff = segment[6:]
    if len(tiff) < 8:
        return 1
    byte_order = tiff[:2]
    if byte_order == b"II":
        endian = "<"
    elif byte_order == b"MM":
        endian = ">"
    else:
        return 1
    try:
        (magic,) = struct.unpack_from(f"{endian}H", tiff, 2)
        if magic != 42:
            return 1
        (ifd_offset,) = struct.unpack_from(f"{endian}I", tiff, 4)
        (entry_count,) = struct.unpack_from(f"{endian}H", tiff, ifd_offset)
        for index in range(entry_count):
            entry = ifd_offset + 2 + index * 12
            tag, field_type = struct.unpack_from(f"{endian}HH", tiff, entry)
            if tag != ORIENTATION_TAG:
                continue
            # SHORT values are left-aligned in the 4-byte value slot.
            if field_type == 3:
                (value,) = struct.unpack_from(f"{endian}H", tiff, entry + 8)
            else:
                (value,) = struct.unpack_from(f"{endian}I", tiff, entry + 8)
            return value if 1 <= value <= 8 else 1
    except struct.error:
        return 1
    return 1


def _pick_jpeg_frame(candidates: list[tuple[int, int]]) -> tuple[int, int] | None:
    for width, height in candidates:
        if width >= PRIMARY_FRAME_MIN_DIMENSION or height >= PRIMARY_FRAME_MIN_DIMENSION:
            return width, height
    if not candidates:
        return None
    return max(candidates, key=lambda size: size[0] * size[1])


def _probe_jpeg(data: bytes) -> ImageMetadata | None:
    candidates: list[tuple[int, int]] = []
    orientation: int | None = None
    offset = 2
    length = len(data)
    while offset + 4 <= length:
        if data[offset] != 0xFF:
            offset += 1
            continue
        marker = data[offset + 1]
        if marker == 0xFF:
            offset += 1
            continue
        if marker in STANDALONE_MARKERS:
            offset += 2
            continue
        if marker == EOI_MARKER:
            break
        (segment_length,) = struct.unpack_from(">H", data, offset + 2)
        if segment_length < 2:
            break
        if marker in SOF_MARKERS and offset + 9 <= length:
            height, width = struct.unpack_from(">HH", data, offset + 5)
            if _within(width, height, JPEG_MAX_DIMENSION):
                candidates.append((width, height))
        elif marker == APP1_MARKER and orientation is None:
            segment = data[offset + 4 : offset + 2 + segment_length]
            if segment.startswith(b"Exif\x00\x00"):
                orientation = read_exif_orientation(segment)
        if marker == SOS_MARKER:
            break
        offset += 2 + segment_length

    frame = _pick_jpeg_frame(candidates)
    if frame is None:
        return None
    return _build(frame[0], frame[1], orientation or 1, "jpeg")


def _probe_png(data: bytes) -> ImageMetadata | None:
    if len(data) < 24 or data[12:16] != b"IHDR":
        return None
    width, height = struct.unpack_from(">II", data, 16)
    if not _within(width, height, PNG_MAX_DIMENSION):
        return None
    return _build(width, height, 1, "png")


def _probe_webp(data: bytes) -> ImageMetadata | None:
    chunk = data[12:16]
    if chunk == b"VP8 ":
        if len(data) < 30 or data[23:26] != b"\x9d\x01\x2a":
            return None
        width, height = struct.unpack_from("<HH", data, 26)
        width &= 0x3FFF
        height &= 0x3FFF
        maximum = VP8_MAX_DIMENSION
    elif chunk == b"VP8L":
        if len(data) < 25 or data[20] != 0x2F:
            return None
        (bits,) = struct.unpack_from("<I", data, 21)
        width = (bits & 0x3FFF) + 1
        height = ((bits >> 14) & 0x3FFF) + 1
        maximum = VP8L_MAX_DIMENSION
    elif chunk == b"VP8X":
        if len(data) < 30:
            return None
        width = int.from_bytes(data[24:27], "little") + 1
        height = int.from_bytes(data[27:30], "little") + 1
        maximum = VP8X_MAX_DIMENSION
    else:
        return None
    if not _within(width, height, maximum):
        return None
    return _build(width, height, 1, "webp")


def probe_image(data: bytes) -> ImageMetadata | None:
    """Return metadata for a JPEG, PNG or WebP payload, or ``None`` if unrecognised."""
    if not data:
        return None
    try:
        if data.startswith(JPEG_SOI):
            return _probe_jpeg(data)
        if data.startswith(PNG_SIGNATURE):
            return _probe_png(data)
        if len(data) >= 16 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return _probe_webp(data)
    except struct.error:
        return None
    return None


def sniff_mime_type(data: bytes, default: str = "image/jpeg") -> str:
    metadata = probe_image(data)
    return metadata.mime_type if metadata else default
