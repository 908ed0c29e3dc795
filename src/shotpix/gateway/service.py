"""Composition root wiring the provider clients behind one gateway object.

``ProviderGateway`` owns the shared ``httpx.AsyncClient`` and hands it to every
provider client. Per-request state (fetched source images) lives in an
``ImageFetcher`` created for each logical request.
"""
from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Awaitable, Sequence

import httpx

from shotpix.gateway.cache import CacheBackend, MemoryCache
from shotpix.gateway.config import GatewayConfig
from shotpix.gateway.generation.client import GenerationClient
from shotpix.gateway.generation.prompt import (
    Gender,
    build_background_prompt,
    build_face_swap_prompt,
    build_merge_prompt,
)
from shotpix.gateway.generation.schema import GenerationResult
from shotpix.gateway.image.aspect_ratio import resolve_aspect_ratio
from shotpix.gateway.image.fetch import STORE_PREFIX, ImageFetcher
from shotpix.gateway.image.schema import ImagePayload
from shotpix.gateway.log_config import logger
from shotpix.gateway.prompt_cache import PromptCache
from shotpix.gateway.safety.moderation import ModerationClient
from shotpix.gateway.safety.schema import SafetyVerdict
from shotpix.gateway.storage import AssetStore, store_result
from shotpix.gateway.token_manager import TokenManager
from shotpix.gateway.upscale.poller import Sleep, UpscaleJobPoller


def prompt_cache_key(ref: str) -> str | None:
    """Cache key for the prompt describing ``ref``; inline data URLs are not cached."""
    if ref.startswith("data:"):
        return None
    return ref.removeprefix(STORE_PREFIX)


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """Like ``asyncio.gather`` but cancels and awaits the remaining calls when one fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ProviderGateway:
    def __init__(
        self,
        config: GatewayConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        cache: CacheBackend | None = None,
        store: AssetStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.request_timeout)
        self.cache = cache if cache is not None else MemoryCache(maxsize=config.token_cache_size)
        self.store = store

        self.tokens = TokenManager(
            self._http,
            cache=self.cache,
            token_endpoint=config.token_endpoint,
            scope=config.token_scope,
            timeout=config.token_timeout,
        )
        self.generation = GenerationClient(self._http, self.tokens, config)
        self.moderation = ModerationClient(
            self._http,
            api_key=config.google_vision_api_key,
            endpoint=config.google_vision_endpoint,
            strictness=config.safety_strictness,
            disabled=config.disable_safe_search,
            timeout=config.request_timeout,
        )
        self.upscaler = UpscaleJobPoller.from_config(self._http, config, sleep=sleep)
        self.prompts = PromptCache(self.cache, store, ttl=config.prompt_cache_ttl)

    def image_fetcher(self) -> ImageFetcher:
        return ImageFetcher(self._http, store=self.store, timeout=self.config.image_fetch_timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def resolve_aspect_ratio(self, requested: str | None, source_ref: str | None, fetcher: ImageFetcher) -> str:
        fetch_source = partial(fetcher.fetch_bytes, source_ref) if source_ref else None
        return await resolve_aspect_ratio(
            requested,
            fetch_source,
            self.config.supported_aspect_ratios,
            self.config.default_aspect_ratio,
        )

    async def resolve_prompt(
        self,
        image_ref: str,
        *,
        fetcher: ImageFetcher | None = None,
        custom_prompt: str | None = None,
        filter_mode: bool = False,
    ) -> dict[str, Any]:
        """Return the structured prompt for ``image_ref``, generating it on a cache miss."""
        fetcher = fetcher or self.image_fetcher()

        async def generate() -> dict[str, Any]:
            image = await fetcher.fetch(image_ref)
            payload = await self.generation.generate_prompt(
                image,
                custom_prompt=custom_prompt,
                filter_mode=filter_mode,
            )
            return payload.model_dump()

        key = prompt_cache_key(image_ref)
        if key is None:
            return await generate()
        return await self.prompts.resolve(key, generate)

    async def face_swap(
        self,
        preset_ref: str,
        selfie_refs: Sequence[str],
        *,
        aspect_ratio: str | None = None,
        model: str | None = None,
        gender: Gender | None = None,
        additional_prompt: str | None = None,
        fetcher: ImageFetcher | None = None,
    ) -> GenerationResult:
        """Re-render the preset scene with the faces from ``selfie_refs``."""
        fetcher = fetcher or self.image_fetcher()
        ratio, prompt, selfies = await gather_or_cancel(
            self.resolve_aspect_ratio(aspect_ratio, preset_ref, fetcher),
            self.resolve_prompt(preset_ref, fetcher=fetcher),
            fetcher.fetch_many(selfie_refs),
        )
        logger.info(
            "gateway.face_swap preset=%s selfies=%d aspectRatio=%s model=%s",
            preset_ref[:100],
            len(selfies),
            ratio,
            model or self.config.default_model,
        )
        prompt_text = build_face_swap_prompt(prompt, gender, additional_prompt)
        return await self.generation.generate(prompt_text, selfies, ratio, model)

    async def merge(
        self,
        subject_ref: str,
        scene_ref: str,
        *,
        prompt: Any = None,
        additional_prompt: str | None = None,
        aspect_ratio: str | None = None,
        model: str | None = None,
        fetcher: ImageFetcher | None = None,
    ) -> GenerationResult:
        fetcher = fetcher or self.image_fetcher()
        ratio, (subject, scene) = await gather_or_cancel(
            self.resolve_aspect_ratio(aspect_ratio, scene_ref, fetcher),
            fetcher.fetch_many([subject_ref, scene_ref]),
        )
        logger.info("gateway.merge aspectRatio=%s model=%s", ratio, model or self.config.default_model)
        prompt_text = build_merge_prompt(prompt, additional_prompt)
        return await self.generation.merge(prompt_text, subject, scene, ratio, model)

    async def background(
        self,
        prompt: str,
        *,
        aspect_ratio: str | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """Generate a background from text alone; ``original`` has no source and resolves to the default."""
        fetcher = self.image_fetcher()
        ratio = await self.resolve_aspect_ratio(aspect_ratio, None, fetcher)
        return await self.generation.generate_from_text_only(build_background_prompt(prompt), ratio, model)

    async def check_image(self, image_uri: str) -> SafetyVerdict:
        return await self.moderation.check_image(image_uri)

    async def check_image_safety(self, image_ref: str, *, fetcher: ImageFetcher | None = None) -> SafetyVerdict:
        """Screen a source image with the generation provider's own safety filters."""
        fetcher = fetcher or self.image_fetcher()
        image = await fetcher.fetch(image_ref)
        return await self.generation.check_image_safety(image)

    async def upscale(self, image_ref: str) -> ImagePayload:
        return await self.upscaler.upscale(image_ref)

    async def persist(self, image: ImagePayload) -> str | None:
        """Store a generated image under ``results/`` and return its key, when a store is configured."""
        if self.store is None:
            return None
        key = await store_result(self.store, image.data, image.mime_type)
        logger.info("gateway.persisted key=%s mimeType=%s bytes=%d", key, image.mime_type, len(image))
        return key
