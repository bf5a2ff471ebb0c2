"""Replicate model client.

Predictions are created with ``Prefer: wait`` and polled until they reach a
terminal status. Video calls retry once without optional quality fields
when the model's schema rejects them.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import httpx

from cutroom.common.errors import NoMediaInResponseError, ProviderError
from cutroom.common.logging import get_logger
from cutroom.common.models import QualityValue
from cutroom.providers.base import ProviderClient, decode_data_url
from cutroom.providers.cancellation import CancellationToken, guarded
from cutroom.providers.retry import (
    RetryPolicy,
    is_field_rejection,
    replicate_policy,
)

logger = get_logger(__name__)

REPLICATE_API_URL = "https://api.replicate.com/v1"

DEFAULT_SOURCE_IMAGE_PARAM = "image_url"

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})


def extract_output_url(output: Any) -> str | None:
    """Media URL from a prediction output, or None when there is none."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, list) and output:
        first = output[0]
        if isinstance(first, str):
            return first or None
        if isinstance(first, dict) and isinstance(first.get("url"), str):
            return first["url"]
        return None
    if isinstance(output, dict) and isinstance(output.get("url"), str):
        return output["url"]
    return None


class ReplicateClient(ProviderClient):
    """Client for the Replicate predictions API."""

    provider = "replicate"

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = REPLICATE_API_URL,
        timeout: float = 600.0,
        poll_interval: float = 2.0,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(
            api_token,
            timeout=timeout,
            http_client=http_client,
            retry_policy=retry_policy or replicate_policy(),
        )
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self._sleep = sleep

    async def upload_file(self, data: bytes, mime_type: str, cancel: CancellationToken | None = None) -> str:
        """Upload raw bytes to Replicate file storage and return the file URL."""
        extension = mime_type.split("/")[-1] or "png"
        body = await guarded(
            self._send(
                "POST",
                f"{self.base_url}/files",
                files={"content": (f"upload.{extension}", data, mime_type)},
            ),
            cancel,
        )
        url = (body.get("urls") or {}).get("get")
        if not url:
            raise NoMediaInResponseError(self.provider, "file URL")
        return url

    async def image_input(self, image: str, cancel: CancellationToken | None = None) -> str:
        """Data URLs are decoded and uploaded; anything else passes through."""
        decoded = decode_data_url(image)
        if decoded is None:
            return image
        mime_type, data = decoded
        logger.debug("replicate_upload", mime_type=mime_type, size=len(data))
        return await self.upload_file(data, mime_type, cancel)

    async def run(
        self,
        endpoint: str,
        model_input: dict[str, Any],
        cancel: CancellationToken | None = None,
    ) -> Any:
        """Create a prediction, wait for it to finish and return its output."""

        async def attempt() -> Any:
            prediction = await self._create_prediction(endpoint, model_input)
            return await self._wait_for(prediction, cancel)

        return await self.retry_policy.run(attempt, cancel)

    async def _create_prediction(self, endpoint: str, model_input: dict[str, Any]) -> dict:
        headers = {"Prefer": "wait"}
        if ":" in endpoint:
            _, version = endpoint.split(":", 1)
            return await self._send(
                "POST",
                f"{self.base_url}/predictions",
                json={"version": version, "input": model_input},
                headers=headers,
            )
        return await self._send(
            "POST",
            f"{self.base_url}/models/{endpoint.strip('/')}/predictions",
            json={"input": model_input},
            headers=headers,
        )

    async def _wait_for(self, prediction: dict, cancel: CancellationToken | None) -> Any:
        while prediction.get("status") not in TERMINAL_STATUSES:
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise ProviderError(
                    self.provider,
                    "replicate prediction has no polling URL",
                    body=prediction,
                )
            await guarded(self._sleep(self.poll_interval), cancel)
            prediction = await self._send("GET", poll_url)

        status = prediction.get("status")
        if status != "succeeded":
            raise ProviderError(
                self.provider,
                f"replicate prediction {status}: {prediction.get('error') or 'unknown error'}",
                body=prediction,
            )
        return prediction.get("output")

    async def generate_image(
        self,
        endpoint: str,
        prompt: str,
        reference_image: str | None = None,
        image_input_param: str | None = None,
        aspect_ratio: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate an image and return its URL."""
        if cancel is not None:
            cancel.raise_if_cancelled()

        model_input: dict[str, Any] = {"prompt": prompt}
        if aspect_ratio:
            model_input["aspect_ratio"] = aspect_ratio
        if reference_image and image_input_param:
            model_input[image_input_param] = await self.image_input(reference_image, cancel)

        logger.info("replicate_image_request", endpoint=endpoint)
        output = await self.run(endpoint, model_input, cancel)
        if cancel is not None:
            cancel.raise_if_cancelled()

        url = extract_output_url(output)
        if not url:
            raise NoMediaInResponseError(self.provider, "image")
        return url

    async def generate_video(
        self,
        endpoint: str,
        prompt: str,
        source_image: str,
        duration: float | int | None = None,
        source_image_param: str | None = None,
        supports_duration: bool | None = None,
        extra_input: dict[str, QualityValue] | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate a video from a source image and return its URL."""
        if cancel is not None:
            cancel.raise_if_cancelled()

        base_input: dict[str, Any] = {
            "prompt": prompt,
            source_image_param or DEFAULT_SOURCE_IMAGE_PARAM: await self.image_input(
                source_image, cancel
            ),
        }
        if duration and supports_duration is not False:
            base_input["duration"] = duration

        extra_keys = list(extra_input or {})
        model_input = {**base_input, **(extra_input or {})}
        logger.info("replicate_video_request", endpoint=endpoint, params=sorted(model_input))

        try:
            output = await self.run(endpoint, model_input, cancel)
        except ProviderError as exc:
            if not is_field_rejection(exc, extra_keys):
                raise
            logger.warning(
                "replicate_optional_params_rejected",
                endpoint=endpoint,
                dropped=extra_keys,
            )
            output = await self.run(endpoint, base_input, cancel)

        if cancel is not None:
            cancel.raise_if_cancelled()

        url = extract_output_url(output)
        if not url:
            raise NoMediaInResponseError(self.provider, "video")
        return url
