"""Vision SafeSearch moderation client."""
from __future__ import annotations

import httpx

from shotpix.gateway.debug import excerpt
from shotpix.gateway.errors import GatewayError, GatewayTimeout, ParseError, ProviderUnavailable
from shotpix.gateway.log_config import logger
from shotpix.gateway.safety.classifier import classify_moderation
from shotpix.gateway.safety.schema import SafetyVerdict


def build_safe_search_request(image_uri: str) -> dict:
    return {
        "requests": [
            {
                "image": {"source": {"imageUri": image_uri}},
                "features": [{"type": "SAFE_SEARCH_DETECTION", "maxResults": 1}],
            }
        ]
    }


class ModerationClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_key: str | None,
        endpoint: str,
        strictness: str = "strict",
        disabled: bool = False,
        timeout: float = 60.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._endpoint = endpoint
        self._strictness = strictness
        self._disabled = disabled
        self._timeout = timeout

    async def check_image(self, image_uri: str) -> SafetyVerdict:
        """Run SafeSearch on a publicly reachable image and classify the annotation."""
        if self._disabled:
            logger.info("moderation.skipped reason=disabled")
            return SafetyVerdict.safe(evidence={"disabled": True})
        if not self._api_key:
            raise GatewayError("GOOGLE_VISION_API_KEY not set")

        try:
            response = await self._http.post(
                self._endpoint,
                params={"key": self._api_key},
                json=build_safe_search_request(image_uri),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise GatewayTimeout("SafeSearch request timed out", debug={"imageUri": image_uri}) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                "SafeSearch provider unreachable",
                debug={"endpoint": self._endpoint, "imageUri": image_uri, "error": str(exc)},
            ) from exc

        if response.status_code >= 400:
            raw = response.text
            message = f"API error: {response.status_code}"
            if response.status_code == 403 and "billing" in raw.lower():
                message = "Billing not enabled for Google Vision API"
            raise ProviderUnavailable(
                message,
                status_code=response.status_code,
                debug={"endpoint": self._endpoint, "rawResponse": excerpt(raw)},
            )

        try:
            data = response.json()
            first = (data.get("responses") or [{}])[0]
        except (ValueError, AttributeError, IndexError) as exc:
            raise ParseError("Failed to parse SafeSearch response", status_code=response.status_code) from exc
        if not isinstance(first, dict):
            raise ParseError("Unexpected SafeSearch response shape", status_code=response.status_code)

        if isinstance(first.get("error"), dict):
            raise ProviderUnavailable(
                first["error"].get("message") or "SafeSearch error",
                status_code=response.status_code,
                debug={"rawResponse": data},
            )
        annotation = first.get("safeSearchAnnotation")
        if not isinstance(annotation, dict):
            raise ParseError("No safe search annotation", status_code=response.status_code, debug={"rawResponse": data})

        verdict = classify_moderation(annotation, strictness=self._strictness)
        logger.info(
            "moderation.checked safe=%s code=%s category=%s level=%s",
            verdict.is_safe,
            verdict.code,
            verdict.category,
            verdict.severity,
        )
        return verdict
