"""Safety taxonomy codes shared by the moderation and generation classifiers."""
from __future__ import annotations

from enum import IntEnum


class ModerationCode(IntEnum):
    """Vision SafeSearch categories (1000+)."""

    ADULT = 1001
    VIOLENCE = 1002
    RACY = 1003
    MEDICAL = 1004
    SPOOF = 1005


class GenerationCode(IntEnum):
    """Generation-provider harm categories (2000+)."""

    HATE_SPEECH = 2001
    HARASSMENT = 2002
    SEXUALLY_EXPLICIT = 2003
    DANGEROUS_CONTENT = 2004


UNKNOWN_PROVIDER_ERROR = 3000
PROMPT_POLICY_REFUSAL = 3001

# Declaration order doubles as the tie-break order when severities are equal.
MODERATION_CATEGORIES: tuple[tuple[str, ModerationCode], ...] = (
    ("adult", ModerationCode.ADULT),
    ("violence", ModerationCode.VIOLENCE),
    ("racy", ModerationCode.RACY),
    ("medical", ModerationCode.MEDICAL),
    ("spoof", ModerationCode.SPOOF),
)

SEVERITY_LEVELS: dict[str, int] = {
    "VERY_UNLIKELY": 0,
    "UNLIKELY": 1,
    "POSSIBLE": 2,
    "LIKELY": 3,
    "VERY_LIKELY": 4,
}

BLOCKING_LEVELS: dict[str, frozenset[str]] = {
    "strict": frozenset({"POSSIBLE", "LIKELY", "VERY_LIKELY"}),
    "lenient": frozenset({"VERY_LIKELY"}),
}

HARM_CATEGORIES: dict[str, GenerationCode] = {
    "HARM_CATEGORY_HATE_SPEECH": GenerationCode.HATE_SPEECH,
    "HARM_CATEGORY_HARASSMENT": GenerationCode.HARASSMENT,
    "HARM_CATEGORY_SEXUALLY_EXPLICIT": GenerationCode.SEXUALLY_EXPLICIT,
    "HARM_CATEGORY_DANGEROUS_CONTENT": GenerationCode.DANGEROUS_CONTENT,
}

HARM_PROBABILITY_SEVERITY: dict[str, int] = {
    "NEGLIGIBLE": 0,
    "LOW": 1,
    "MEDIUM": 2,
    "HIGH": 3,
}

# finishReason / blockReason values that end a request without usable output.
TERMINAL_FINISH_REASONS = frozenset(
    {
        "SAFETY",
        "PROHIBITED_CONTENT",
        "BLOCKLIST",
        "SPII",
        "IMAGE_SAFETY",
        "IMAGE_PROHIBITED_CONTENT",
        "RECITATION",
        "IMAGE_RECITATION",
        "OTHER",
        "IMAGE_OTHER",
        "NO_IMAGE",
    }
)


def category_name(code: int) -> str:
    """Return a lower-case category label for any taxonomy code."""
    if code == UNKNOWN_PROVIDER_ERROR:
        return "unknown_provider_error"
    if code == PROMPT_POLICY_REFUSAL:
        return "prompt_policy_refusal"
    for enum_type in (ModerationCode, GenerationCode):
        try:
            return enum_type(code).name.lower()
        except ValueError:
            continue
    return "unknown"
