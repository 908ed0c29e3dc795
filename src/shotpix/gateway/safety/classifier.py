"""Map raw provider responses onto the fixed safety taxonomy.

Two code spaces are kept apart:

* moderation verdicts (1001-1005) come from a Vision SafeSearch annotation,
  where every category carries a five-level likelihood;
* generation verdicts (2001-2004, 3000, 3001) come from a Gemini
  ``generateContent`` body, either from structured ``safetyRatings`` or,
  when the provider only refuses in prose, from an ordered table of text
  rules.

Everything here is pure: no I/O, no clock, no shared state.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator

from shotpix.gateway.safety.codes import (
    BLOCKING_LEVELS,
    HARM_CATEGORIES,
    HARM_PROBABILITY_SEVERITY,
    MODERATION_CATEGORIES,
    PROMPT_POLICY_REFUSAL,
    SEVERITY_LEVELS,
    TERMINAL_FINISH_REASONS,
    UNKNOWN_PROVIDER_ERROR,
    GenerationCode,
    category_name,
)
from shotpix.gateway.safety.schema import SafetyVerdict

FLAGGED_PROBABILITIES = frozenset({"MEDIUM", "HIGH"})

_SAFETY_ERROR_RE = re.compile(
    r"\b(safety|blocked|prohibited|responsible ai|usage guidelines|sensitive words)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RefusalRule:
    pattern: re.Pattern[str]
    code: int


# Evaluated top to bottom; the first match wins. Our own content instruction
# names the harm categories, so its phrasing has to be checked before them.
REFUSAL_RULES: tuple[RefusalRule, ...] = (
    RefusalRule(
        re.compile(
            r"\b(content polic(y|ies)|play store|all audiences|family[- ]friendly|wholesome)\b",
            re.IGNORECASE,
        ),
        PROMPT_POLICY_REFUSAL,
    ),
    RefusalRule(
        re.compile(
            r"\b(sexual\w*|sexually explicit|explicit (content|imagery|images?|material)|nud(e|es|ity)|naked"
            r"|porn\w*|erotic\w*|nsfw|adult content)\b",
            re.IGNORECASE,
        ),
        GenerationCode.SEXUALLY_EXPLICIT,
    ),
    RefusalRule(
        re.compile(
            r"\b(dangerous|weapons?|firearms?|explosives?|self[- ]harm|suicide|illegal (activit\w+|drugs?)"
            r"|harmful activit\w+|violen(ce|t)|gore)\b",
            re.IGNORECASE,
        ),
        GenerationCode.DANGEROUS_CONTENT,
    ),
    RefusalRule(
        re.compile(
            r"\b(hate ?speech|hateful|hate|discriminat\w*|racis[mt]\w*|slurs?|bigot\w*)\b",
            re.IGNORECASE,
        ),
        GenerationCode.HATE_SPEECH,
    ),
    RefusalRule(
        re.compile(r"\b(harass\w*|bull(y|ying|ied)|intimidat\w*|threaten\w*|demean\w*)\b", re.IGNORECASE),
        GenerationCode.HARASSMENT,
    ),
)

# Free model text only counts as a refusal when it is phrased as one.
REFUSAL_PHRASING_RE = re.compile(
    r"\b(can ?not|can['’]t|unable|won['’]t|will not|not able|sorry|apologi[sz]e|declin\w*|refus\w*"
    r"|not (allowed|permitted|appropriate)|violat\w*|against|prohibited|conflicts? with)\b",
    re.IGNORECASE,
)


def classify(response: Any, *, strictness: str = "strict") -> SafetyVerdict:
    """Classify either a SafeSearch response or a generation response."""
    annotation = _extract_safe_search_annotation(response)
    if annotation is not None:
        return classify_moderation(annotation, strictness=strictness)
    return classify_generation(response)


# ---------------------------------------------------------------------------
# Moderation (SafeSearch)
# ---------------------------------------------------------------------------


def _extract_safe_search_annotation(response: Any) -> dict[str, Any] | None:
    if not isinstance(response, dict):
        return None
    if isinstance(response.get("safeSearchAnnotation"), dict):
        return response["safeSearchAnnotation"]
    responses = response.get("responses")
    if isinstance(responses, list) and responses and isinstance(responses[0], dict):
        annotation = responses[0].get("safeSearchAnnotation")
        if isinstance(annotation, dict):
            return annotation
    return None


def classify_moderation(annotation: dict[str, Any], *, strictness: str = "strict") -> SafetyVerdict:
    """Report the most severe blocking SafeSearch category, if any."""
    blocking = BLOCKING_LEVELS.get(strictness, BLOCKING_LEVELS["strict"])
    worst: tuple[int, str, str, int] | None = None
    for name, code in MODERATION_CATEGORIES:
        level = annotation.get(name)
        if not isinstance(level, str) or level not in blocking:
            continue
        severity = SEVERITY_LEVELS.get(level, 0)
        # Strictly greater keeps the earlier category on ties.
        if worst is None or severity > worst[0]:
            worst = (severity, name, level, int(code))

    if worst is None:
        return SafetyVerdict.safe(evidence=annotation)

    _, name, level, code = worst
    return SafetyVerdict(
        is_safe=False,
        code=code,
        category=name,
        severity=level,
        reason=f"Image flagged as {name} ({level})",
        evidence=annotation,
    )


# ---------------------------------------------------------------------------
# Generation provider
# ---------------------------------------------------------------------------


def _candidates(body: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = body.get("candidates")
    if not isinstance(candidates, list):
        return []
    return [candidate for candidate in candidates if isinstance(candidate, dict)]


def _iter_safety_ratings(body: dict[str, Any]) -> Iterator[dict[str, Any]]:
    feedback = body.get("promptFeedback")
    if isinstance(feedback, dict):
        for rating in feedback.get("safetyRatings") or []:
            if isinstance(rating, dict):
                yield rating
    for candidate in _candidates(body):
        for rating in candidate.get("safetyRatings") or []:
            if isinstance(rating, dict):
                yield rating


def _is_flagged(rating: dict[str, Any]) -> bool:
    return rating.get("blocked") is True or rating.get("probability") in FLAGGED_PROBABILITIES


def _rating_verdict(body: dict[str, Any]) -> tuple[SafetyVerdict | None, bool]:
    """Return the worst mapped rating and whether an unmapped rating was flagged."""
    category_order = list(HARM_CATEGORIES)
    best: tuple[tuple[int, int, int], dict[str, Any]] | None = None
    unmapped_flag = False
    for rating in _iter_safety_ratings(body):
        if not _is_flagged(rating):
            continue
        category = rating.get("category")
        if category not in HARM_CATEGORIES:
            unmapped_flag = True
            continue
        rank = (
            1 if rating.get("blocked") is True else 0,
            HARM_PROBABILITY_SEVERITY.get(str(rating.get("probability")), 0),
            -category_order.index(category),
        )
        if best is None or rank > best[0]:
            best = (rank, rating)

    if best is None:
        return None, unmapped_flag
    rating = best[1]
    code = int(HARM_CATEGORIES[rating["category"]])
    return (
        SafetyVerdict(
            is_safe=False,
            code=code,
            category=category_name(code),
            severity=rating.get("probability"),
            reason=f"Blocked by provider safety filter: {rating['category']}",
            evidence={"source": "safetyRatings", "rating": rating},
        ),
        unmapped_flag,
    )


def _terminal_signals(body: dict[str, Any]) -> list[str]:
    signals: list[str] = []
    feedback = body.get("promptFeedback")
    if isinstance(feedback, dict):
        block_reason = feedback.get("blockReason")
        if block_reason and block_reason != "BLOCK_REASON_UNSPECIFIED":
            signals.append(f"blockReason={block_reason}")
    for candidate in _candidates(body):
        finish_reason = candidate.get("finishReason")
        if finish_reason in TERMINAL_FINISH_REASONS:
            signals.append(f"finishReason={finish_reason}")
    error = body.get("error")
    if isinstance(error, dict):
        error_text = f"{error.get('status') or ''} {error.get('message') or ''}"
        if _SAFETY_ERROR_RE.search(error_text):
            signals.append(f"error={error.get('status') or error.get('code')}")
    return signals


def _has_inline_image(candidate: dict[str, Any]) -> bool:
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    for part in parts or []:
        if isinstance(part, dict) and (part.get("inlineData") or part.get("inline_data")):
            return True
    return False


def _refusal_texts(body: dict[str, Any], *, inspect_text: bool) -> list[str]:
    texts: list[str] = []
    feedback = body.get("promptFeedback")
    if isinstance(feedback, dict) and isinstance(feedback.get("blockReasonMessage"), str):
        texts.append(feedback["blockReasonMessage"])
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        texts.append(error["message"])
    elif isinstance(body.get("message"), str):
        texts.append(body["message"])
    for candidate in _candidates(body):
        if isinstance(candidate.get("finishMessage"), str):
            texts.append(candidate["finishMessage"])
        if not inspect_text or _has_inline_image(candidate):
            continue
        content = candidate.get("content")
        for part in (content.get("parts") if isinstance(content, dict) else None) or []:
            if not isinstance(part, dict) or part.get("thought") or not isinstance(part.get("text"), str):
                continue
            if REFUSAL_PHRASING_RE.search(part["text"]):
                texts.append(part["text"])
    return [text.strip() for text in texts if text and text.strip()]


def match_refusal_text(text: str) -> int | None:
    """Return the code of the first rule matching ``text``."""
    for rule in REFUSAL_RULES:
        if rule.pattern.search(text):
            return int(rule.code)
    return None


def classify_generation(body: Any, *, inspect_text: bool = True) -> SafetyVerdict:
    """Classify a ``generateContent`` response or error body.

    ``inspect_text`` controls whether free text in image-less candidates is
    read as a refusal. Callers that expect a text answer turn it off.
    """
    if not isinstance(body, dict):
        return SafetyVerdict.safe()

    verdict, unmapped_flag = _rating_verdict(body)
    if verdict is not None:
        return verdict

    signals = _terminal_signals(body)
    if unmapped_flag:
        signals.append("safetyRatings=unmapped")

    for text in _refusal_texts(body, inspect_text=inspect_text):
        code = match_refusal_text(text)
        if code is None:
            continue
        return SafetyVerdict(
            is_safe=False,
            code=code,
            category=category_name(code),
            reason=text[:300],
            evidence={"source": "text", "text": text, "signals": signals},
        )

    if signals:
        return SafetyVerdict(
            is_safe=False,
            code=UNKNOWN_PROVIDER_ERROR,
            category=category_name(UNKNOWN_PROVIDER_ERROR),
            reason="Request blocked by the provider",
            evidence={"source": "signal", "signals": signals},
        )

    return SafetyVerdict.safe()
