import pytest

from shotpix.gateway.config import DEFAULT_SUPPORTED_ASPECT_RATIOS
from shotpix.gateway.image.aspect_ratio import (
    classify_orientation,
    closest_supported_ratio,
    parse_ratio,
    resolve_aspect_ratio,
)
from tests.gateway.helpers import make_image_bytes

SUPPORTED = DEFAULT_SUPPORTED_ASPECT_RATIOS
DEFAULT = "3:4"


def _source(data: bytes):
    async def _fetch() -> bytes:
        return data

    return _fetch


@pytest.mark.parametrize("ratio", SUPPORTED)
def test_exact_supported_ratio_maps_to_itself(ratio: str) -> None:
    width, height = parse_ratio(ratio)

    assert closest_supported_ratio(width * 120, height * 120, SUPPORTED, DEFAULT) == ratio


@pytest.mark.parametrize(
    ("width", "height", "expected"),
    [
        (1005, 1000, "1:1"),
        (1000, 1700, "9:16"),
        (1920, 1000, "16:9"),
        (2600, 1000, "21:9"),
        (1000, 1260, "4:5"),
    ],
)
def test_closest_ratio_keeps_orientation(width: int, height: int, expected: str) -> None:
    result = closest_supported_ratio(width, height, SUPPORTED, DEFAULT)

    assert result == expected
    assert result in SUPPORTED


def test_falls_back_to_full_set_when_orientation_has_no_candidate() -> None:
    assert closest_supported_ratio(1000, 1500, ["1:1", "16:9"], "1:1") == "1:1"


def test_classify_orientation_square_tolerance() -> None:
    assert classify_orientation(1010, 1000) == "square"
    assert classify_orientation(1011, 1000) == "landscape"
    assert classify_orientation(1000, 1011) == "portrait"


@pytest.mark.parametrize("value", ["", "16", "a:b", "0:1", "1:-2", "1:2:3"])
def test_parse_ratio_rejects_garbage(value: str) -> None:
    assert parse_ratio(value) is None


async def test_concrete_supported_request_is_kept() -> None:
    assert await resolve_aspect_ratio("16:9", None, SUPPORTED, DEFAULT) == "16:9"


async def test_concrete_unsupported_request_uses_default() -> None:
    assert await resolve_aspect_ratio("7:5", None, SUPPORTED, DEFAULT) == DEFAULT


async def test_original_derives_from_rotated_source() -> None:
    source = _source(make_image_bytes(1000, 500, exif_orientation=6))

    assert await resolve_aspect_ratio("original", source, SUPPORTED, DEFAULT) == "9:16"


async def test_missing_request_derives_from_source() -> None:
    source = _source(make_image_bytes(1600, 900))

    assert await resolve_aspect_ratio(None, source, SUPPORTED, DEFAULT) == "16:9"


async def test_fetch_failure_uses_default() -> None:
    async def _broken() -> bytes:
        raise ConnectionError("unreachable")

    assert await resolve_aspect_ratio("original", _broken, SUPPORTED, DEFAULT) == DEFAULT


async def test_unrecognised_source_uses_default() -> None:
    assert await resolve_aspect_ratio("original", _source(b"not an image"), SUPPORTED, DEFAULT) == DEFAULT


async def test_original_without_source_uses_default() -> None:
    assert await resolve_aspect_ratio("original", None, SUPPORTED, DEFAULT) == DEFAULT
