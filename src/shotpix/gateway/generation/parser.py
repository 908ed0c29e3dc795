"""Response parsing for the generation provider.

Field names for the same value have varied across API versions, so each value
is read through an ordered list of extraction strategies.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, Callable

from pydantic import ValidationError

from shotpix.gateway.errors import ParseError
from shotpix.gateway.generation.schema import PROMPT_MIN_LENGTH, PROMPT_REQUIRED_KEYS, PromptPayload
from shotpix.gateway.image.schema import ImagePayload

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"

InlineStrategy = Callable[[dict[str, Any]], dict[str, Any] | None]


def _camel_inline_data(part: dict[str, Any]) -> dict[str, Any] | None:
    value = part.get("inlineData")
    if isinstance(value, dict) and value.get("data"):
        return {"data": value["data"], "mime_type": value.get("mimeType") or value.get("mime_type")}
    return None


def _snake_inline_data(part: dict[str, Any]) -> dict[str, Any] | None:
    value = part.get("inline_data")
    if isinstance(value, dict) and value.get("data"):
        return {"data": value["data"], "mime_type": value.get("mime_type") or value.get("mimeType")}
    return None


INLINE_DATA_STRATEGIES: tuple[InlineStrategy, ...] = (_camel_inline_data, _snake_inline_data)


def first_candidate_parts(body: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def find_inline_data(parts: list[dict[str, Any]]) -> dict[str, Any] | None:
    for part in parts:
        for strategy in INLINE_DATA_STRATEGIES:
            found = strategy(part)
            if found is not None:
                return found
    return None


def extract_inline_image(body: dict[str, Any]) -> ImagePayload | None:
    """Decode the first inline image of the first candidate, if any."""
    found = find_inline_data(first_candidate_parts(body))
    if found is None:
        return None
    raw = found["data"]
    if not isinstance(raw, str):
        raise ParseError("Inline image data is not a base64 string")
    try:
        data = base64.b64decode("".join(raw.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ParseError("Inline image data is not valid base64") from exc
    if not data:
        raise ParseError("Inline image data is empty")
    return ImagePayload(data=data, mime_type=found.get("mime_type") or DEFAULT_IMAGE_MIME_TYPE)


def extract_text(body: dict[str, Any]) -> str:
    fragments: list[str] = []
    for part in first_candidate_parts(body):
        text_value = part.get("text")
        if isinstance(text_value, str) and text_value.strip() and not part.get("thought"):
            fragments.append(text_value.strip())
    return "\n".join(fragments).strip()


# ---------------------------------------------------------------------------
# Prompt JSON
# ---------------------------------------------------------------------------

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")


def _field_re(name: str) -> re.Pattern[str]:
    return re.compile(rf'"{name}"\s*:\s*"((?:[^"\\]|\\.)*)"')


_FIELD_FALLBACKS = {
    "style": "photorealistic",
    "lighting": "natural",
    "composition": "portrait",
    "camera": "professional",
    "background": "neutral",
}


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def _direct(text: str) -> dict[str, Any] | None:
    return _load_object(text)


def _fenced(text: str) -> dict[str, Any] | None:
    match = _FENCED_JSON_RE.search(text)
    return _load_object(match.group(1)) if match else None


def _brace_completed(text: str) -> dict[str, Any] | None:
    if not text.startswith("{") or text.endswith("}"):
        return None
    missing = text.count("{") - text.count("}")
    return _load_object(text + "}" * max(0, missing))


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


def _field_wise(text: str) -> dict[str, Any] | None:
    prompt_match = _field_re("prompt").search(text)
    if not prompt_match:
        return None
    result: dict[str, Any] = {"prompt": _unescape(prompt_match.group(1))}
    for key, fallback in _FIELD_FALLBACKS.items():
        match = _field_re(key).search(text)
        result[key] = _unescape(match.group(1)) if match else fallback
    return result


PROMPT_JSON_STRATEGIES: tuple[Callable[[str], dict[str, Any] | None], ...] = (
    _direct,
    _fenced,
    _brace_completed,
    _field_wise,
)


def parse_json(text: str | None) -> dict[str, Any] | None:
    """Best-effort extraction of a JSON object from model text."""
    if not text:
        return None
    stripped = text.strip()
    for strategy in PROMPT_JSON_STRATEGIES:
        parsed = strategy(stripped)
        if parsed is not None:
            return parsed
    return None


def parse_prompt_payload(body: dict[str, Any]) -> PromptPayload:
    """Read the structured prompt out of a prompt-generation response."""
    parts = first_candidate_parts(body)
    if not parts:
        raise ParseError("No response parts from generation provider")

    parsed: dict[str, Any] | None = None
    for part in parts:
        text_value = part.get("text")
        if isinstance(text_value, str) and not part.get("thought"):
            parsed = parse_json(text_value)
            if parsed is not None:
                break
    if parsed is None:
        raise ParseError("No valid JSON response from generation provider", debug={"text": extract_text(body)[:500]})

    missing = [key for key in PROMPT_REQUIRED_KEYS if not parsed.get(key)]
    if missing:
        raise ParseError(f"Missing required keys: {', '.join(missing)}")
    if len(str(parsed["prompt"])) < PROMPT_MIN_LENGTH:
        raise ParseError("Prompt too short - likely truncated response")
    try:
        return PromptPayload.model_validate(parsed)
    except ValidationError as exc:
        raise ParseError("Prompt payload has unexpected field types") from exc
