"""fal.ai endpoint client.

Endpoints are invoked synchronously through ``https://fal.run/<endpoint>``.
Inline video source images are uploaded to fal storage first; the data URL
is sent as-is when the upload fails.
Transient failures are retried by the fal policy; video calls add two
one-shot fallbacks on top: dropping optional quality fields the endpoint
rejects, and snapping ``duration`` to a value the endpoint permits.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

from cutroom.common.errors import NoMediaInResponseError, ProviderError
from cutroom.common.logging import get_logger
from cutroom.common.models import QualityValue
from cutroom.generation.registry import endpoint_requires_image_input
from cutroom.providers.base import ProviderClient, decode_data_url
from cutroom.providers.cancellation import CancellationToken, guarded
from cutroom.providers.retry import (
    FIELD_REJECTION_KEYWORDS,
    RetryPolicy,
    fal_policy,
    is_field_rejection,
)

logger = get_logger(__name__)

FAL_RUN_URL = "https://fal.run"
FAL_STORAGE_URL = "https://rest.alpha.fal.ai"

DEFAULT_SOURCE_IMAGE_PARAM = "image_url"

FAL_REJECTION_KEYWORDS = FIELD_REJECTION_KEYWORDS + ("value_error",)

_QUOTED = re.compile(r"'([^']+)'")
_SECONDS = re.compile(r"^(\d+(?:\.\d+)?)s$")


def permitted_durations(exc: BaseException) -> list[str | int | float]:
    """Duration values a 422 validation detail says the endpoint accepts."""
    if not isinstance(exc, ProviderError) or not isinstance(exc.body, dict):
        return []
    detail = exc.body.get("detail")
    if not isinstance(detail, list):
        return []

    for item in detail:
        if not isinstance(item, dict):
            continue
        loc = [str(part).lower() for part in item.get("loc") or []]
        if "duration" not in loc:
            continue

        permitted = (item.get("ctx") or {}).get("permitted")
        if isinstance(permitted, list) and permitted:
            values = [
                value
                for value in permitted
                if isinstance(value, (str, int, float)) and not isinstance(value, bool)
            ]
            if values:
                return values

        quoted = [value for value in _QUOTED.findall(str(item.get("msg") or "")) if value]
        if quoted:
            return quoted

    return []


def _as_seconds(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    text = value.strip().lower()
    match = _SECONDS.match(text)
    if match:
        text = match.group(1)
    try:
        return float(text)
    except ValueError:
        return None


def nearest_permitted_duration(
    permitted: list[str | int | float],
    requested: Any,
) -> str | int | float | None:
    """Closest permitted value to ``requested``; first value if unparseable."""
    if not permitted:
        return None

    requested_sec = _as_seconds(requested)
    if requested_sec is None:
        return permitted[0]

    best = None
    best_delta = float("inf")
    for candidate in permitted:
        seconds = _as_seconds(candidate)
        if seconds is None:
            continue
        delta = abs(seconds - requested_sec)
        if delta < best_delta:
            best, best_delta = candidate, delta
    return permitted[0] if best is None else best


class FalClient(ProviderClient):
    """Client for fal.ai model endpoints."""

    provider = "fal"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = FAL_RUN_URL,
        storage_url: str = FAL_STORAGE_URL,
        timeout: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(
            api_key,
            timeout=timeout,
            http_client=http_client,
            retry_policy=retry_policy or fal_policy(),
        )
        self.base_url = base_url.rstrip("/")
        self.storage_url = storage_url.rstrip("/")

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.api_key}"}

    async def run(
        self,
        endpoint: str,
        payload: dict[str, Any],
        cancel: CancellationToken | None = None,
    ) -> dict:
        """Invoke an endpoint under the transport retry policy."""
        url = f"{self.base_url}/{endpoint.strip('/')}"

        async def attempt() -> dict:
            return await self._send("POST", url, json=payload)

        return await self.retry_policy.run(attempt, cancel)

    async def upload_file(self, data: bytes, mime_type: str, cancel: CancellationToken | None = None) -> str:
        """Upload raw bytes to fal storage and return the public file URL."""
        extension = mime_type.split("/")[-1] or "png"
        target = await guarded(
            self._send(
                "POST",
                f"{self.storage_url}/storage/upload/initiate",
                params={"storage_type": "fal-cdn-v3"},
                json={"content_type": mime_type, "file_name": f"upload.{extension}"},
            ),
            cancel,
        )
        upload_url = target.get("upload_url") if isinstance(target, dict) else None
        file_url = target.get("file_url") if isinstance(target, dict) else None
        if not upload_url or not file_url:
            raise NoMediaInResponseError(self.provider, "upload URL")

        try:
            response = await guarded(
                self._http.put(upload_url, content=data, headers={"Content-Type": mime_type}),
                cancel,
            )
        except httpx.TransportError as exc:
            raise ProviderError(
                self.provider,
                f"fal storage upload failed: {str(exc) or type(exc).__name__}",
            ) from exc
        if response.is_error:
            raise ProviderError(
                self.provider,
                f"fal storage upload failed ({response.status_code})",
                status=response.status_code,
            )
        return file_url

    async def image_input(self, image: str, cancel: CancellationToken | None = None) -> str:
        """Storage URL for a data URL, or the input unchanged if upload fails."""
        decoded = decode_data_url(image)
        if decoded is None:
            return image
        mime_type, data = decoded
        try:
            url = await self.upload_file(data, mime_type, cancel)
        except (ProviderError, NoMediaInResponseError) as exc:
            logger.warning("fal_upload_failed", size_kb=len(data) // 1024, error=exc.message)
            return image
        logger.debug("fal_upload_ok", size_kb=len(data) // 1024)
        return url

    async def generate_image(
        self,
        endpoint: str,
        prompt: str,
        reference_image: str | None = None,
        image_input_param: str | None = None,
        image_is_array: bool = False,
        aspect_ratio: str | None = None,
        resolution: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate an image and return its URL."""
        if cancel is not None:
            cancel.raise_if_cancelled()

        payload: dict[str, Any] = {"prompt": prompt}
        if reference_image and image_input_param:
            payload[image_input_param] = [reference_image] if image_is_array else reference_image
        elif reference_image and (
            endpoint_requires_image_input(endpoint) or "nano-banana" in endpoint.lower()
        ):
            # Text-to-image endpoints get no image input
            payload["image_urls"] = [reference_image]

        if aspect_ratio:
            payload["aspect_ratio"] = aspect_ratio
        if resolution:
            payload["resolution"] = resolution

        logger.info("fal_image_request", endpoint=endpoint, params=sorted(payload))
        data = await self.run(endpoint, payload, cancel)
        if cancel is not None:
            cancel.raise_if_cancelled()

        images = data.get("images") if isinstance(data, dict) else None
        url = images[0].get("url") if images and isinstance(images[0], dict) else None
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

        source_url = await self.image_input(source_image, cancel)
        base_input: dict[str, Any] = {
            "prompt": prompt,
            source_image_param or DEFAULT_SOURCE_IMAGE_PARAM: source_url,
        }
        if duration and supports_duration is not False:
            base_input["duration"] = duration

        extra_keys = list(extra_input or {})
        payload = {**base_input, **(extra_input or {})}
        dropped_extra = False
        adjusted_duration = False

        logger.info("fal_video_request", endpoint=endpoint, params=sorted(payload))

        while True:
            try:
                data = await self.run(endpoint, payload, cancel)
                break
            except ProviderError as exc:
                if not dropped_extra and is_field_rejection(
                    exc, extra_keys, FAL_REJECTION_KEYWORDS
                ):
                    dropped_extra = True
                    payload = {
                        **base_input,
                        **({"duration": payload["duration"]} if "duration" in payload else {}),
                    }
                    logger.warning(
                        "fal_optional_params_rejected",
                        endpoint=endpoint,
                        dropped=extra_keys,
                    )
                    continue

                replacement = None
                if not adjusted_duration:
                    replacement = nearest_permitted_duration(
                        permitted_durations(exc),
                        payload.get("duration", duration),
                    )
                if replacement is not None and replacement != payload.get("duration"):
                    adjusted_duration = True
                    payload = {**payload, "duration": replacement}
                    logger.warning(
                        "fal_duration_adjusted",
                        endpoint=endpoint,
                        duration=replacement,
                    )
                    continue
                raise

        if cancel is not None:
            cancel.raise_if_cancelled()

        video = data.get("video") if isinstance(data, dict) else None
        url = video.get("url") if isinstance(video, dict) else None
        if not url:
            raise NoMediaInResponseError(self.provider, "video")
        return url
