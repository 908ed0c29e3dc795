"""Schema definitions for safety verdicts."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SafetyVerdict(BaseModel):
    """Outcome of classifying one provider response."""

    model_config = ConfigDict(frozen=True)

    is_safe: bool = Field(..., description="False when any blocking signal was found")
    code: int | None = Field(default=None, description="Taxonomy code, set whenever is_safe is False")
    category: str | None = Field(default=None, description="Category label for the code")
    severity: str | None = Field(default=None, description="Provider severity/probability level")
    reason: str | None = Field(default=None, description="Caller-safe explanation")
    evidence: Any = Field(default=None, description="Raw signal that produced the verdict")

    @model_validator(mode="after")
    def _unsafe_requires_code(self) -> "SafetyVerdict":
        if not self.is_safe and self.code is None:
            raise ValueError("an unsafe verdict must carry a taxonomy code")
        return self

    @classmethod
    def safe(cls, evidence: Any = None) -> "SafetyVerdict":
        return cls(is_safe=True, evidence=evidence)
