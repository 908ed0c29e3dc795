"""Pick a supported aspect ratio for a request, deriving it from the source image when asked."""
from __future__ import annotations

from typing import Awaitable, Callable, Literal, Sequence

from shotpix.gateway.image.metadata import probe_image
from shotpix.gateway.log_config import logger

ORIGINAL_SENTINEL = "original"
SQUARE_TOLERANCE_PX = 10

Orientation = Literal["portrait", "landscape", "square"]
SourceFetcher = Callable[[], Awaitable[bytes]]


def parse_ratio(value: str) -> tuple[int, int] | None:
    parts = value.split(":")
    if len(parts) != 2:
        return None
    try:
        width = int(parts[0])
        height = int(parts[1])
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height


def classify_orientation(width: int, height: int, tolerance: int = SQUARE_TOLERANCE_PX) -> Orientation:
    if abs(width - height) <= tolerance:
        return "square"
    return "landscape" if width > height else "portrait"


def _ratio_orientation(ratio: tuple[int, int]) -> Orientation:
    width, height = ratio
    if width == height:
        return "square"
    return "landscape" if width > height else "portrait"


def closest_supported_ratio(width: int, height: int, supported: Sequence[str], default: str) -> str:
    """Return the supported ratio nearest to ``width/height`` without flipping orientation."""
    parsed: list[tuple[str, tuple[int, int]]] = []
    for value in supported:
        ratio = parse_ratio(value)
        if ratio is not None:
            parsed.append((value, ratio))
    if not parsed:
        return default

    orientation = classify_orientation(width, height)
    candidates = [(value, ratio) for value, ratio in parsed if _ratio_orientation(ratio) == orientation]
    if not candidates:
        candidates = parsed

    actual = width / height
    best_value, _ = min(candidates, key=lambda item: abs(actual - item[1][0] / item[1][1]))
    return best_value


async def resolve_aspect_ratio(
    requested: str | None,
    fetch_source: SourceFetcher | None,
    supported: Sequence[str],
    default: str,
) -> str:
    """Resolve ``requested`` to a member of ``supported``.

    ``None``/empty/``"original"`` derives the ratio from the source image. A
    concrete value is kept only when supported. Any failure falls back to
    ``default``.
    """
    if requested and requested != ORIGINAL_SENTINEL:
        if requested in supported:
            return requested
        logger.info("aspect_ratio.unsupported requested=%s default=%s", requested, default)
        return default

    if fetch_source is None:
        return default

    try:
        data = await fetch_source()
    except Exception as exc:
        logger.warning("aspect_ratio.fetch failed error=%s default=%s", exc, default)
        return default

    metadata = probe_image(data)
    if metadata is None:
        logger.info("aspect_ratio.probe unrecognised bytes=%d default=%s", len(data), default)
        return default

    resolved = closest_supported_ratio(metadata.width, metadata.height, supported, default)
    logger.info(
        "aspect_ratio.resolved width=%d height=%d rotated=%s ratio=%s",
        metadata.width,
        metadata.height,
        metadata.rotated,
        resolved,
    )
    return resolved
