from shotpix.gateway.safety.classifier import classify, classify_generation, classify_moderation
from shotpix.gateway.safety.codes import PROMPT_POLICY_REFUSAL, UNKNOWN_PROVIDER_ERROR, GenerationCode, ModerationCode
from shotpix.gateway.safety.schema import SafetyVerdict

__all__ = [
    "GenerationCode",
    "ModerationCode",
    "PROMPT_POLICY_REFUSAL",
    "SafetyVerdict",
    "UNKNOWN_PROVIDER_ERROR",
    "classify",
    "classify_generation",
    "classify_moderation",
]
