"""Schema definitions for image payloads passed between gateway components."""
from __future__ import annotations

import base64

from pydantic import BaseModel, Field


class ImagePayload(BaseModel):
    """Raw image bytes and their mime type."""

    data: bytes = Field(..., repr=False)
    mime_type: str = Field(default="image/jpeg")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    def __len__(self) -> int:
        return len(self.data)
