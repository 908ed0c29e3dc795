import struct

import pytest

from shotpix.gateway.image.metadata import probe_image, read_exif_orientation, sniff_mime_type
from tests.gateway.helpers import make_image_bytes


def _sof(marker: int, width: int, height: int) -> bytes:
    return bytes([0xFF, marker]) + struct.pack(">HBHHB", 17, 8, height, width, 3) + bytes(9)


def _app1_big_endian(orientation: int) -> bytes:
    tiff = b"MM" + struct.pack(">HI", 42, 8) + struct.pack(">H", 1)
    tiff += struct.pack(">HHI", 0x0112, 3, 1) + struct.pack(">HH", orientation, 0) + struct.pack(">I", 0)
    payload = b"Exif\x00\x00" + tiff
    return b"\xff\xe1" + struct.pack(">H", len(payload) + 2) + payload


_SOS = b"\xff\xda" + struct.pack(">H", 8) + bytes(6)


def test_pillow_jpeg_with_rotation_reports_display_dimensions() -> None:
    data = make_image_bytes(1000, 500, exif_orientation=6)

    metadata = probe_image(data)

    assert metadata is not None
    assert metadata.format == "jpeg"
    assert (metadata.raw_width, metadata.raw_height) == (1000, 500)
    assert (metadata.width, metadata.height) == (500, 1000)
    assert metadata.orientation == 6
    assert metadata.rotated is True


def test_pillow_jpeg_without_exif_defaults_to_orientation_one() -> None:
    metadata = probe_image(make_image_bytes(640, 480))

    assert metadata is not None
    assert (metadata.width, metadata.height) == (640, 480)
    assert metadata.orientation == 1
    assert metadata.rotated is False


def test_pillow_png() -> None:
    metadata = probe_image(make_image_bytes(10, 10, image_format="PNG"))

    assert metadata is not None
    assert metadata.format == "png"
    assert (metadata.width, metadata.height) == (10, 10)
    assert metadata.mime_type == "image/png"


def test_big_endian_exif_orientation_is_honoured() -> None:
    data = b"\xff\xd8" + _app1_big_endian(8) + _sof(0xC0, 1200, 900) + _SOS

    metadata = probe_image(data)

    assert metadata is not None
    assert metadata.orientation == 8
    assert (metadata.width, metadata.height) == (900, 1200)


def test_jpeg_prefers_first_frame_large_enough_over_thumbnail() -> None:
    data = b"\xff\xd8" + _sof(0xC0, 160, 120) + _sof(0xC2, 1200, 800) + _SOS

    metadata = probe_image(data)

    assert metadata is not None
    assert (metadata.width, metadata.height) == (1200, 800)


def test_jpeg_falls_back_to_largest_frame_when_all_are_small() -> None:
    data = b"\xff\xd8" + _sof(0xC0, 100, 50) + _sof(0xC1, 200, 150) + _SOS

    metadata = probe_image(data)

    assert metadata is not None
    assert (metadata.width, metadata.height) == (200, 150)


def test_read_exif_orientation_rejects_malformed_segments() -> None:
    assert read_exif_orientation(b"nope") == 1
    assert read_exif_orientation(b"Exif\x00\x00XX") == 1
    assert read_exif_orientation(b"Exif\x00\x00II*\x00\xff\xff\xff\x00") == 1


def _riff(chunk: bytes) -> bytes:
    return b"RIFF" + struct.pack("<I", len(chunk) + 4) + b"WEBP" + chunk


def test_webp_vp8x_dimensions() -> None:
    chunk = b"VP8X" + struct.pack("<I", 10) + bytes(4) + (799).to_bytes(3, "little") + (599).to_bytes(3, "little")

    metadata = probe_image(_riff(chunk))

    assert metadata is not None
    assert metadata.format == "webp"
    assert (metadata.width, metadata.height) == (800, 600)


def test_webp_vp8l_dimensions() -> None:
    bits = (300 - 1) | ((200 - 1) << 14)
    chunk = b"VP8L" + struct.pack("<I", 5) + b"\x2f" + struct.pack("<I", bits)

    metadata = probe_image(_riff(chunk))

    assert metadata is not None
    assert (metadata.width, metadata.height) == (300, 200)


def test_webp_vp8_dimensions() -> None:
    chunk = b"VP8 " + struct.pack("<I", 10) + bytes(3) + b"\x9d\x01\x2a" + struct.pack("<HH", 640, 360)

    metadata = probe_image(_riff(chunk))

    assert metadata is not None
    assert (metadata.width, metadata.height) == (640, 360)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"GIF89a\x01\x00\x01\x00",
        b"\xff\xd8",
        b"\x89PNG\r\n\x1a\n" + bytes(4) + b"IHDR" + struct.pack(">II", 0, 10),
        _riff(b"VP8 " + struct.pack("<I", 10) + bytes(3) + b"\x00\x00\x00" + struct.pack("<HH", 640, 360)),
    ],
)
def test_unrecognised_or_invalid_payloads_return_none(data: bytes) -> None:
    assert probe_image(data) is None


def test_sniff_mime_type_falls_back_to_default() -> None:
    assert sniff_mime_type(make_image_bytes(20, 20, image_format="PNG")) == "image/png"
    assert sniff_mime_type(b"plain text", default="application/octet-stream") == "application/octet-stream"
