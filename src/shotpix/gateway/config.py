"""Gateway configuration loaded from environment variables or a .env file."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SafetyStrictness = Literal["strict", "lenient"]

DEFAULT_SUPPORTED_ASPECT_RATIOS = ["1:1", "3:2", "2:3", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]

DEFAULT_MODEL_MAPPING = {
    "2.5": "gemini-2.5-flash-image",
    "3": "gemini-3-pro-image-preview",
}

# Preview models are only served from the global endpoint.
DEFAULT_MODEL_LOCATIONS = {
    "gemini-3-pro-image-preview": "global",
}


class GatewayConfig(BaseSettings):
    """Provider credentials, endpoints and tuning knobs for the gateway."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Vertex AI (generation provider)
    google_vertex_project_id: str | None = Field(default=None, description="GCP project hosting Vertex AI")
    google_vertex_location: str = Field(default="us-central1")
    google_service_account_email: str | None = Field(default=None)
    google_service_account_private_key: str | None = Field(default=None, repr=False)
    token_endpoint: str = Field(default="https://oauth2.googleapis.com/token")
    token_scope: str = Field(default="https://www.googleapis.com/auth/cloud-platform")

    # Models
    model_mapping: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MODEL_MAPPING))
    model_locations: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MODEL_LOCATIONS))
    default_model: str = Field(default="2.5", description="Alias used when the caller does not pick a model")
    prompt_generation_model: str = Field(default="gemini-2.5-flash")
    safety_check_model: str = Field(default="gemini-2.5-flash-lite", description="Model used to pre-screen images")

    # Aspect ratios
    supported_aspect_ratios: list[str] = Field(default_factory=lambda: list(DEFAULT_SUPPORTED_ASPECT_RATIOS))
    default_aspect_ratio: str = Field(default="3:4")

    # Cloud Vision (moderation provider)
    google_vision_api_key: str | None = Field(default=None, repr=False)
    google_vision_endpoint: str = Field(default="https://vision.googleapis.com/v1/images:annotate")
    safety_strictness: SafetyStrictness = Field(default="strict")
    disable_safe_search: bool = Field(default=False)
    disable_safety_check: bool = Field(default=False)

    # WaveSpeed (upscale provider)
    wavespeed_api_key: str | None = Field(default=None, repr=False)
    upscaler_endpoint: str = Field(default="https://api.wavespeed.ai/api/v3/wavespeed-ai/image-upscaler")
    upscaler_result_endpoint: str = Field(default="https://api.wavespeed.ai/api/v3/predictions/{job_id}/result")
    upscaler_target_resolution: str = Field(default="4k")
    upscaler_output_format: str = Field(default="jpeg")

    # Timeouts (seconds) and polling
    request_timeout: float = Field(default=60.0, gt=0)
    token_timeout: float = Field(default=60.0, gt=0)
    image_fetch_timeout: float = Field(default=60.0, gt=0)
    poll_max_attempts: int = Field(default=20, ge=1)
    poll_first_delay: float = Field(default=2.0, ge=0)
    poll_early_delay: float = Field(default=4.0, ge=0)
    poll_late_delay: float = Field(default=8.0, ge=0)

    # Caches and storage
    redis_url: str | None = Field(default=None)
    token_cache_size: int = Field(default=50, ge=1)
    prompt_cache_ttl: int = Field(default=31536000, ge=1, description="One year")
    gcs_bucket_name: str | None = Field(default=None)
    result_cache_control: str = Field(default="public, max-age=31536000, immutable")

    # Diagnostics
    enable_debug_response: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    @field_validator("google_service_account_private_key")
    @classmethod
    def _unescape_private_key(cls, value: str | None) -> str | None:
        # Keys pasted into env files usually carry literal "\n" sequences.
        if value and "\\n" in value:
            return value.replace("\\n", "\n")
        return value

    @model_validator(mode="after")
    def _check_default_aspect_ratio(self) -> "GatewayConfig":
        if self.default_aspect_ratio not in self.supported_aspect_ratios:
            raise ValueError(
                f"default_aspect_ratio {self.default_aspect_ratio!r} is not one of {self.supported_aspect_ratios}"
            )
        return self

    @property
    def has_vertex_credentials(self) -> bool:
        return bool(
            self.google_vertex_project_id
            and self.google_service_account_email
            and self.google_service_account_private_key
        )


@lru_cache()
def get_config() -> GatewayConfig:  # pragma: no cover
    """Return a cached config instance so the environment is only parsed once."""

    return GatewayConfig()
