"""Vertex AI generateContent client for image generation and prompt generation."""
from __future__ import annotations

import json
import time
from typing import Any, Sequence

import httpx

from shotpix.gateway.config import GatewayConfig
from shotpix.gateway.debug import excerpt, sanitize
from shotpix.gateway.errors import AuthError, GatewayTimeout, ParseError, ProviderError, ProviderUnavailable
from shotpix.gateway.generation.parser import extract_inline_image, parse_prompt_payload
from shotpix.gateway.generation.prompt import select_prompt_generation_text
from shotpix.gateway.generation.schema import GenerationRequest, GenerationResult, PromptPayload
from shotpix.gateway.image.schema import ImagePayload
from shotpix.gateway.log_config import logger
from shotpix.gateway.safety.classifier import classify_generation
from shotpix.gateway.safety.codes import HARM_CATEGORIES, UNKNOWN_PROVIDER_ERROR, category_name
from shotpix.gateway.safety.schema import SafetyVerdict
from shotpix.gateway.token_manager import TokenManager

GLOBAL_LOCATION = "global"

IMAGE_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 1,
    "maxOutputTokens": 32768,
    "topP": 0.95,
    "responseModalities": ["TEXT", "IMAGE"],
}

IMAGE_OUTPUT_CONFIG: dict[str, Any] = {
    "imageSize": "1K",
    "personGeneration": "ALLOW_ALL",
    "imageOutputOptions": {"mimeType": "image/jpeg", "compressionQuality": 100},
}

PROMPT_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "prompt": {"type": "STRING"},
        "style": {"type": "STRING"},
        "lighting": {"type": "STRING"},
        "composition": {"type": "STRING"},
        "camera": {"type": "STRING"},
        "background": {"type": "STRING"},
    },
    "required": ["prompt", "style", "lighting", "composition", "camera", "background"],
}

PROMPT_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.1,
    "topK": 1,
    "topP": 1,
    "maxOutputTokens": 2048,
    "responseMimeType": "application/json",
    "responseSchema": PROMPT_RESPONSE_SCHEMA,
}

SAFETY_CHECK_PROMPT = "Describe this image briefly."

SAFETY_CHECK_CONFIG: dict[str, Any] = {
    "temperature": 0,
    "maxOutputTokens": 64,
}

SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"
SAFETY_SETTINGS: list[dict[str, str]] = [
    {"category": category, "threshold": SAFETY_THRESHOLD} for category in HARM_CATEGORIES
]


def build_endpoint(project_id: str, location: str, model_id: str) -> str:
    host = "aiplatform.googleapis.com" if location == GLOBAL_LOCATION else f"{location}-aiplatform.googleapis.com"
    return (
        f"https://{host}/v1/projects/{project_id}/locations/{location}"
        f"/publishers/google/models/{model_id}:generateContent"
    )


def build_image_parts(images: Sequence[ImagePayload]) -> list[dict[str, Any]]:
    return [{"inline_data": {"mime_type": image.mime_type, "data": image.to_base64()}} for image in images]


def build_generation_body(request: GenerationRequest) -> dict[str, Any]:
    """Images first, then the prompt text, in a single user turn."""
    parts = build_image_parts(request.images)
    parts.append({"text": request.prompt_text})
    return {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": {
            **IMAGE_GENERATION_CONFIG,
            "imageConfig": {**IMAGE_OUTPUT_CONFIG, "aspectRatio": request.aspect_ratio},
        },
        "safetySettings": [dict(setting) for setting in SAFETY_SETTINGS],
    }


def build_prompt_generation_body(image: ImagePayload, prompt_text: str) -> dict[str, Any]:
    """Instruction first, then the image to describe."""
    parts: list[dict[str, Any]] = [{"text": prompt_text}, *build_image_parts([image])]
    return {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": dict(PROMPT_GENERATION_CONFIG),
        "safetySettings": [dict(setting) for setting in SAFETY_SETTINGS],
    }


def build_safety_check_body(image: ImagePayload) -> dict[str, Any]:
    parts: list[dict[str, Any]] = [{"text": SAFETY_CHECK_PROMPT}, *build_image_parts([image])]
    return {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": dict(SAFETY_CHECK_CONFIG),
        "safetySettings": [dict(setting) for setting in SAFETY_SETTINGS],
    }


def _error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    message = body.get("message")
    return message if isinstance(message, str) else None


class GenerationClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenManager,
        config: GatewayConfig,
    ) -> None:
        self._http = http_client
        self._tokens = token_manager
        self._config = config

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    def resolve_model(self, model: str | None) -> str:
        """Map a short alias to a model id. Full ids pass through; unknown values use the default."""
        mapping = self._config.model_mapping
        if model:
            if model in mapping:
                return mapping[model]
            if model in mapping.values():
                return model
            logger.info("generation.model unknown=%s default=%s", model, self._config.default_model)
        return mapping.get(self._config.default_model, self._config.default_model)

    def location_for(self, model_id: str) -> str:
        return self._config.model_locations.get(model_id, self._config.google_vertex_location)

    def endpoint_for(self, model_id: str) -> str:
        if not self._config.google_vertex_project_id:
            raise AuthError("GOOGLE_VERTEX_PROJECT_ID is required for Vertex AI")
        return build_endpoint(self._config.google_vertex_project_id, self.location_for(model_id), model_id)

    def normalize_aspect_ratio(self, aspect_ratio: str | None) -> str:
        if aspect_ratio and aspect_ratio in self._config.supported_aspect_ratios:
            return aspect_ratio
        return self._config.default_aspect_ratio

    async def _bearer_token(self) -> str:
        email = self._config.google_service_account_email
        private_key = self._config.google_service_account_private_key
        if not email or not private_key:
            raise AuthError("Google Service Account credentials are required for Vertex AI")
        token = await self._tokens.get_token(email, private_key)
        return token.value

    async def _post(self, endpoint: str, body: dict[str, Any]) -> httpx.Response:
        token = await self._bearer_token()
        try:
            return await self._http.post(
                endpoint,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._config.request_timeout,
            )
        except httpx.TimeoutException as exc:
            raise GatewayTimeout("Generation request timed out", debug={"endpoint": endpoint}) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                "Generation provider unreachable",
                debug={"endpoint": endpoint, "error": str(exc)},
            ) from exc

    def _request_debug(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        debug: dict[str, Any] = {"endpoint": endpoint}
        if self._config.enable_debug_response:
            debug["requestPayload"] = sanitize(body)
        return debug

    # ------------------------------------------------------------------
    # Response processing
    # ------------------------------------------------------------------

    def _process_response(
        self,
        response: httpx.Response,
        request: GenerationRequest,
        debug: dict[str, Any],
    ) -> GenerationResult:
        raw = response.text
        debug = {**debug, "statusCode": response.status_code}

        if response.status_code >= 400:
            try:
                body: Any = json.loads(raw)
            except ValueError:
                body = None
            if isinstance(body, dict):
                verdict = classify_generation(body)
                if not verdict.is_safe:
                    return self._blocked(request, verdict, debug)
            raise ProviderUnavailable(
                f"Generation provider error: {response.status_code}",
                status_code=response.status_code,
                debug={
                    **debug,
                    "providerMessage": _error_message(body),
                    "rawResponse": sanitize(body) if isinstance(body, dict) else excerpt(raw),
                },
            )

        try:
            body = json.loads(raw)
        except ValueError as exc:
            raise ParseError(
                "Failed to parse generation response",
                status_code=response.status_code,
                debug={**debug, "rawResponse": excerpt(raw)},
            ) from exc
        if not isinstance(body, dict):
            raise ParseError("Unexpected generation response shape", status_code=response.status_code, debug=debug)

        verdict = classify_generation(body)
        if not verdict.is_safe:
            return self._blocked(request, verdict, debug)

        try:
            image = extract_inline_image(body)
        except ParseError as exc:
            exc.status_code = response.status_code
            raise
        if image is None:
            raise ProviderError(
                "No image data in response",
                code=UNKNOWN_PROVIDER_ERROR,
                status_code=response.status_code,
                debug={**debug, "rawResponse": sanitize(body)},
            )

        logger.info(
            "generation.completed model=%s aspectRatio=%s mimeType=%s bytes=%d",
            request.model_id,
            request.aspect_ratio,
            image.mime_type,
            len(image),
        )
        return GenerationResult(
            image=image,
            model_id=request.model_id,
            aspect_ratio=request.aspect_ratio,
            debug=debug,
        )

    def _blocked(
        self,
        request: GenerationRequest,
        verdict: SafetyVerdict,
        debug: dict[str, Any],
    ) -> GenerationResult:
        logger.warning(
            "generation.blocked model=%s code=%s category=%s reason=%s",
            request.model_id,
            verdict.code,
            verdict.category,
            verdict.reason,
        )
        return GenerationResult(
            verdict=verdict,
            model_id=request.model_id,
            aspect_ratio=request.aspect_ratio,
            debug=debug,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _run(self, request: GenerationRequest) -> GenerationResult:
        endpoint = self.endpoint_for(request.model_id)
        body = build_generation_body(request)
        logger.info(
            "generation.request model=%s aspectRatio=%s imageCount=%d promptLength=%d",
            request.model_id,
            request.aspect_ratio,
            len(request.images),
            len(request.prompt_text),
        )
        started = time.perf_counter()
        response = await self._post(endpoint, body)
        debug = self._request_debug(endpoint, body)
        debug["durationMs"] = int((time.perf_counter() - started) * 1000)
        return self._process_response(response, request, debug)

    def _request(
        self,
        prompt_text: str,
        images: Sequence[ImagePayload],
        aspect_ratio: str | None,
        model: str | None,
    ) -> GenerationRequest:
        return GenerationRequest(
            prompt_text=prompt_text,
            images=list(images),
            aspect_ratio=self.normalize_aspect_ratio(aspect_ratio),
            model_id=self.resolve_model(model),
        )

    async def generate(
        self,
        prompt_text: str,
        images: Sequence[ImagePayload],
        aspect_ratio: str | None,
        model: str | None = None,
    ) -> GenerationResult:
        """Generate one image from ordered reference images and a prompt."""
        return await self._run(self._request(prompt_text, images, aspect_ratio, model))

    async def merge(
        self,
        prompt_text: str,
        subject_image: ImagePayload,
        scene_image: ImagePayload,
        aspect_ratio: str | None,
        model: str | None = None,
    ) -> GenerationResult:
        """Composite the subject of the first image into the scene of the second."""
        return await self._run(self._request(prompt_text, [subject_image, scene_image], aspect_ratio, model))

    async def generate_from_text_only(
        self,
        prompt_text: str,
        aspect_ratio: str | None,
        model: str | None = None,
    ) -> GenerationResult:
        return await self._run(self._request(prompt_text, [], aspect_ratio, model))

    async def generate_prompt(
        self,
        image: ImagePayload,
        *,
        custom_prompt: str | None = None,
        filter_mode: bool = False,
    ) -> PromptPayload:
        """Describe ``image`` as a structured prompt.

        A safety block here has no image to stand in for, so it is raised as a
        ``ProviderError`` carrying the taxonomy code.
        """
        model_id = self._config.prompt_generation_model
        endpoint = self.endpoint_for(model_id)
        body = build_prompt_generation_body(image, select_prompt_generation_text(custom_prompt, filter_mode))
        logger.info(
            "generation.prompt_request model=%s filterMode=%s custom=%s",
            model_id,
            filter_mode,
            bool(custom_prompt),
        )

        response = await self._post(endpoint, body)
        debug = {**self._request_debug(endpoint, body), "statusCode": response.status_code}
        raw = response.text
        try:
            data: Any = json.loads(raw)
        except ValueError:
            data = None

        if isinstance(data, dict):
            verdict = classify_generation(data, inspect_text=False)
            if not verdict.is_safe:
                logger.warning("generation.prompt_blocked code=%s category=%s", verdict.code, verdict.category)
                raise ProviderError(
                    verdict.reason or "Prompt generation blocked",
                    code=verdict.code,
                    status_code=response.status_code,
                    debug={**debug, "evidence": verdict.evidence},
                )

        if response.status_code >= 400:
            raise ProviderUnavailable(
                f"Generation provider error: {response.status_code}",
                status_code=response.status_code,
                debug={**debug, "providerMessage": _error_message(data), "rawResponse": excerpt(raw)},
            )
        if not isinstance(data, dict):
            raise ParseError(
                "Failed to parse prompt generation response",
                status_code=response.status_code,
                debug={**debug, "rawResponse": excerpt(raw)},
            )

        payload = parse_prompt_payload(data)
        logger.info("generation.prompt_completed model=%s promptLength=%d", model_id, len(payload.prompt))
        return payload

    async def check_image_safety(self, image: ImagePayload) -> SafetyVerdict:
        """Pre-screen ``image`` by asking a lightweight model to describe it.

        Only the provider's safety signals are read. A 400 mentioning
        ``SAFETY`` that carries no classifiable body still counts as a block.
        """
        if self._config.disable_safety_check:
            logger.info("generation.safety_check skipped reason=disabled")
            return SafetyVerdict.safe(evidence={"disabled": True})

        model_id = self._config.safety_check_model
        endpoint = self.endpoint_for(model_id)
        body = build_safety_check_body(image)
        response = await self._post(endpoint, body)
        debug = {**self._request_debug(endpoint, body), "statusCode": response.status_code}
        raw = response.text
        try:
            data: Any = json.loads(raw)
        except ValueError:
            data = None

        verdict = classify_generation(data, inspect_text=False) if isinstance(data, dict) else None
        if verdict is None or verdict.is_safe:
            if response.status_code == 400 and "SAFETY" in raw:
                verdict = SafetyVerdict(
                    is_safe=False,
                    code=UNKNOWN_PROVIDER_ERROR,
                    category=category_name(UNKNOWN_PROVIDER_ERROR),
                    reason="Image blocked by safety filters",
                    evidence={"source": "error", "rawResponse": excerpt(raw, limit=500)},
                )
            elif response.status_code >= 400:
                raise ProviderUnavailable(
                    f"Safety check provider error: {response.status_code}",
                    status_code=response.status_code,
                    debug={**debug, "providerMessage": _error_message(data), "rawResponse": excerpt(raw)},
                )
            elif verdict is None:
                raise ParseError(
                    "Failed to parse safety check response",
                    status_code=response.status_code,
                    debug={**debug, "rawResponse": excerpt(raw)},
                )

        logger.info(
            "generation.safety_checked model=%s safe=%s code=%s category=%s",
            model_id,
            verdict.is_safe,
            verdict.code,
            verdict.category,
        )
        return verdict
