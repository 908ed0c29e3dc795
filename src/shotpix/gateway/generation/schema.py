"""Schema definitions for generation requests and results."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shotpix.gateway.image.schema import ImagePayload
from shotpix.gateway.safety.schema import SafetyVerdict

PROMPT_REQUIRED_KEYS = ("prompt", "style", "lighting", "composition", "camera", "background")
PROMPT_MIN_LENGTH = 50


class GenerationRequest(BaseModel):
    """One multimodal generation call: ordered images followed by the prompt text."""

    prompt_text: str = Field(..., min_length=1)
    images: list[ImagePayload] = Field(default_factory=list)
    aspect_ratio: str
    model_id: str


class GenerationResult(BaseModel):
    """Either a generated image or the safety verdict that blocked it."""

    image: ImagePayload | None = None
    verdict: SafetyVerdict | None = None
    model_id: str | None = None
    aspect_ratio: str | None = None
    debug: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "GenerationResult":
        if (self.image is None) == (self.verdict is None):
            raise ValueError("a generation result carries exactly one of image or verdict")
        if self.verdict is not None and self.verdict.is_safe:
            raise ValueError("a failed generation result needs an unsafe verdict")
        return self

    @property
    def success(self) -> bool:
        return self.image is not None


class PromptPayload(BaseModel):
    """Structured scene description produced by the prompt-generation call."""

    model_config = ConfigDict(extra="allow")

    prompt: str
    style: str
    lighting: str
    composition: str
    camera: str
    background: str
