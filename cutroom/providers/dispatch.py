"""Route generation requests to the provider that serves a model."""

from __future__ import annotations

from typing import Sequence

import httpx

from cutroom.common.config import Settings
from cutroom.common.errors import ConfigurationError, MissingReferenceImageError
from cutroom.common.logging import get_logger
from cutroom.common.models import ImageModel, Provider, VideoModel
from cutroom.generation.quality import resolve_video_quality_input
from cutroom.providers.cancellation import CancellationToken
from cutroom.providers.fal import FalClient
from cutroom.providers.openrouter import OpenRouterClient
from cutroom.providers.replicate import ReplicateClient

logger = get_logger(__name__)


class ProviderDispatcher:
    """Owns one client per provider and checks credentials before each call.

    Clients are created on first use from settings. Pass ``http_client`` to
    share a single connection pool (or a mock transport) across providers.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        fal: FalClient | None = None,
        replicate: ReplicateClient | None = None,
        openrouter: OpenRouterClient | None = None,
    ):
        self.settings = settings
        self._http = http_client
        self._fal = fal
        self._replicate = replicate
        self._openrouter = openrouter

    # =========================================================================
    # Clients
    # =========================================================================

    def fal(self) -> FalClient:
        if not self.settings.fal_api_key:
            raise ConfigurationError("fal.ai API key is not configured")
        if self._fal is None:
            self._fal = FalClient(
                self.settings.fal_api_key,
                base_url=self.settings.fal_run_url,
                storage_url=self.settings.fal_storage_url,
                timeout=self.settings.generation_timeout_seconds,
                http_client=self._http,
            )
        return self._fal

    def replicate(self) -> ReplicateClient:
        if not self.settings.replicate_api_token:
            raise ConfigurationError("Replicate API token is not configured")
        if self._replicate is None:
            self._replicate = ReplicateClient(
                self.settings.replicate_api_token,
                base_url=self.settings.replicate_api_url,
                timeout=self.settings.generation_timeout_seconds,
                http_client=self._http,
            )
        return self._replicate

    def openrouter(self) -> OpenRouterClient:
        if not self.settings.openrouter_api_key:
            raise ConfigurationError("OpenRouter API key is not configured")
        if self._openrouter is None:
            self._openrouter = OpenRouterClient(
                self.settings.openrouter_api_key,
                url=self.settings.openrouter_url,
                referer=self.settings.openrouter_referer,
                timeout=self.settings.request_timeout_seconds,
                http_client=self._http,
            )
        return self._openrouter

    async def aclose(self) -> None:
        for client in (self._fal, self._replicate, self._openrouter):
            if client is not None:
                await client.aclose()

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_image(
        self,
        model: ImageModel,
        prompt: str,
        reference_image: str | None = None,
        aspect_ratio: str | None = None,
        resolution: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate an image with a fal or Replicate model; returns a URL."""
        if model.requires_image_input and not reference_image:
            raise MissingReferenceImageError(model.id)
        logger.debug("dispatch_image", model=model.id, provider=model.provider.value)

        if model.provider == Provider.FAL:
            return await self.fal().generate_image(
                model.endpoint,
                prompt,
                reference_image=reference_image,
                image_input_param=model.image_input_param,
                image_is_array=model.image_is_array,
                aspect_ratio=aspect_ratio,
                resolution=resolution,
                cancel=cancel,
            )

        return await self.replicate().generate_image(
            model.endpoint,
            prompt,
            reference_image=reference_image,
            image_input_param=model.image_input_param,
            aspect_ratio=aspect_ratio,
            cancel=cancel,
        )

    async def generate_video_from_image(
        self,
        model: VideoModel,
        prompt: str,
        source_image: str,
        duration: float | None = None,
        quality: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate a video from an image; returns a URL."""
        quality_input = resolve_video_quality_input(model, quality)
        logger.debug(
            "dispatch_video",
            model=model.id,
            provider=model.provider.value,
            quality_input=quality_input,
        )

        client = self.fal() if model.provider == Provider.FAL else self.replicate()
        return await client.generate_video(
            model.endpoint,
            prompt,
            source_image,
            duration=duration,
            source_image_param=model.source_image_param,
            supports_duration=model.supports_duration,
            extra_input=quality_input,
            cancel=cancel,
        )

    async def generate_openrouter_image(
        self,
        model_id: str,
        prompt: str,
        reference_images: Sequence[str] = (),
        size: str | None = None,
        quality: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate (or edit) an image through OpenRouter; returns a data URL or URL."""
        return await self.openrouter().generate_image(
            model_id,
            prompt,
            reference_images=reference_images,
            size=size,
            quality=quality,
            cancel=cancel,
        )
