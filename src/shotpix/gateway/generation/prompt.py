"""Prompt texts and builders for face-swap, merge, background and prompt generation."""
from __future__ import annotations

import json
from typing import Any, Literal

Gender = Literal["male", "female"]

FACIAL_PRESERVATION_MARKER = "100% identical facial features"

FACIAL_PRESERVATION_INSTRUCTION = (
    "Keep the person exactly as shown in the reference image with 100% identical facial features, "
    "bone structure, skin tone, and appearance. Remove all pimples, blemishes, and skin imperfections. "
    "Enhance skin texture with flawless, smooth, and natural appearance. 1:1 aspect ratio, 8K ultra-high "
    "detail, ultra-sharp facial features, and professional skin retouching."
)

CONTENT_SAFETY_INSTRUCTION = (
    "The result must be fully compliant with Google Play Store content policies: no sexual, explicit, "
    "suggestive, racy, erotic, fetish, or adult content; no exposed sensitive body areas; no violence, "
    "gore, or hateful imagery. The scene must remain wholesome, respectful, and appropriate for all audiences."
)

MERGE_PROMPT_DEFAULT = (
    "Create photorealistic composite placing the subject from [Image 1] into the scene of [Image 2]. "
    "The subject is naturally with corrected, realistic proportions, fix unnatural anatomical distortions, "
    "ensure legs are proportioned correctly and not artificially shortened by perspective, ensure hands and "
    "feet are realistically sized and shaped, avoiding any disproportionate scaling. The lighting, color "
    "temperature, contrast, and shadows on the subject perfectly match the background environment, making "
    "them look completely grounded and seamlessly integrated into the photograph. Ensure color grading and "
    "contrast are consistent between the subject and the environment for a natural look. If needed you can "
    "replace the existing outfit to match with the scene and environment, but keep each subject face and "
    "expression. Even the body propositions can be replace to ensure the photo is most realistic. Ensure the "
    "clothing fits the subjects' body shapes and proportions correctly."
)

_PROMPT_JSON_SHAPE = (
    'Generate a JSON object with the following keys: "prompt", "style", "lighting", "composition", '
    '"camera", and "background".'
)

_PROMPT_POLICY_CLAUSE = (
    "The generated prompt must be fully compliant with Google Play Store content policies: the description "
    "must not contain any sexual, explicit, suggestive, racy, erotic, fetish, or adult content; no exposed "
    "sensitive body areas; no provocative wording or implications; and the entire scene must remain "
    "wholesome, respectful, and appropriate for all audiences."
)

PROMPT_GENERATION_DEFAULT = (
    "Analyze the provided image and return a detailed description of its contents, pose, clothing, "
    "environment, HDR lighting, style, and composition in a strict JSON format. "
    f"{_PROMPT_JSON_SHAPE} "
    'For the "prompt" key, write a detailed HDR scene description based on the target image, including the '
    "character's pose, outfit, environment, atmosphere, and visual mood. In the \"prompt\" field, also include "
    'this exact face-swap rule: "Replace the original face with the face from the image I will upload later. '
    f"{FACIAL_PRESERVATION_INSTRUCTION} Do not alter the facial structure, identity, age, or ethnicity, and "
    "preserve all distinctive facial features. Makeup, lighting, and color grading may be adjusted only to "
    'match the HDR visual look of the target scene." '
    f"{_PROMPT_POLICY_CLAUSE} "
    "The JSON should fully describe the image and follow the specified structure, without any extra "
    "commentary or text outside the JSON."
)

PROMPT_GENERATION_FILTER = (
    "Analyze the provided image as a visual filter reference and return its artistic treatment in a strict "
    f"JSON format. {_PROMPT_JSON_SHAPE} "
    'For the "prompt" key, describe how to restyle a user photo so it adopts this image\'s color grading, '
    "lighting, texture, and mood while keeping the person's identity, pose, and composition unchanged. "
    f"{_PROMPT_POLICY_CLAUSE} "
    "Return only the JSON object, without any extra commentary."
)

GENDER_HINTS: dict[str, str] = {
    "male": "Emphasize that the character is male with confident, masculine presence and styling.",
    "female": "Emphasize that the character is female with graceful, feminine presence and styling.",
}


def serialize_prompt(prompt: Any) -> str:
    """Render a stored prompt (structured JSON or plain text) as request text."""
    if prompt is None:
        return ""
    if isinstance(prompt, (dict, list)):
        return json.dumps(prompt, indent=2, ensure_ascii=False)
    return str(prompt).strip()


def with_safety_instruction(text: str) -> str:
    return f"{text}\n\n{CONTENT_SAFETY_INSTRUCTION}"


def build_face_swap_prompt(prompt: Any, gender: Gender | None = None, additional_prompt: str | None = None) -> str:
    text = serialize_prompt(prompt)
    if FACIAL_PRESERVATION_MARKER not in text:
        text = f"{text} {FACIAL_PRESERVATION_INSTRUCTION}".strip()
    if additional_prompt and additional_prompt.strip():
        text = f"{text}\n\n{additional_prompt.strip()}"
    if gender and gender in GENDER_HINTS:
        text = f"{text}\n\n{GENDER_HINTS[gender]}"
    return with_safety_instruction(text)


def build_merge_prompt(prompt: Any = None, additional_prompt: str | None = None) -> str:
    text = serialize_prompt(prompt) or MERGE_PROMPT_DEFAULT
    if additional_prompt and additional_prompt.strip():
        text = f"{text}\n\n{additional_prompt.strip()}"
    return with_safety_instruction(text)


def build_background_prompt(prompt: str) -> str:
    return with_safety_instruction(prompt.strip())


def select_prompt_generation_text(custom_prompt: str | None, filter_mode: bool) -> str:
    if custom_prompt and custom_prompt.strip():
        return custom_prompt.strip()
    return PROMPT_GENERATION_FILTER if filter_mode else PROMPT_GENERATION_DEFAULT
