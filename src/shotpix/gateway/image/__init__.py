from shotpix.gateway.image.aspect_ratio import ORIGINAL_SENTINEL, closest_supported_ratio, resolve_aspect_ratio
from shotpix.gateway.image.metadata import ImageMetadata, probe_image
from shotpix.gateway.image.schema import ImagePayload

__all__ = [
    "ORIGINAL_SENTINEL",
    "ImageMetadata",
    "ImagePayload",
    "closest_supported_ratio",
    "probe_image",
    "resolve_aspect_ratio",
]
