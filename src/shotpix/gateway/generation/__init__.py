"""Image and prompt generation against the Vertex AI generateContent API."""
from shotpix.gateway.generation.client import GenerationClient
from shotpix.gateway.generation.schema import GenerationRequest, GenerationResult, PromptPayload

__all__ = ["GenerationClient", "GenerationRequest", "GenerationResult", "PromptPayload"]
