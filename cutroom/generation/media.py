"""Project media storage.

Generated images and videos are written under the project directory:

    <projects_dir>/<project_id>/shots/<shot_id>/generated/gen_<ms>.png
    <projects_dir>/<project_id>/shots/<shot_id>/video/vid_<ms>.mp4

Brief reference images are read from ``brief/images``.
"""

from __future__ import annotations

import base64
import binascii
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

import httpx

from cutroom.common.errors import CutroomError, InvalidRequestError, ProviderError
from cutroom.common.logging import get_logger
from cutroom.common.models import is_external_media_ref
from cutroom.providers.retry import RetryPolicy, is_fal_retryable

logger = get_logger(__name__)

MAX_REFERENCE_BYTES = 1_500_000

_IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}


def image_mime_type(filename: str) -> str:
    """MIME type from extension; unknown extensions are treated as JPEG."""
    return _IMAGE_MIME_TYPES.get(Path(filename).suffix.lower(), "image/jpeg")


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_image_result(result: str) -> bytes | None:
    """Bytes for a data URL or bare base64 payload; None for anything else."""
    payload = result
    if payload.startswith("data:"):
        payload = payload.split(",", 1)[1] if "," in payload else ""
    elif payload.startswith(("http://", "https://")):
        return None
    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError):
        return None


class MediaStore(ABC):
    """Where shot artifacts are read from and written to."""

    @abstractmethod
    async def save_image(self, project_id: str, shot_id: str, result: str, prefix: str = "gen") -> str:
        """Persist an image result and return the reference to store on the shot.

        Returns a local filename, or the remote URL itself when the image
        could not be downloaded.
        """

    @abstractmethod
    async def save_video(self, project_id: str, shot_id: str, url: str) -> str:
        """Persist a video result; same return convention as ``save_image``."""

    @abstractmethod
    async def load_image(self, project_id: str, shot_id: str, ref: str) -> str:
        """Turn a stored image reference into something a provider accepts."""

    @abstractmethod
    async def load_references(self, project_id: str, asset_refs: Sequence[str]) -> list[str]:
        """Data URLs for the brief reference images a shot points at."""


class LocalMediaStore(MediaStore):
    """Media store backed by the local projects directory."""

    def __init__(
        self,
        projects_dir: str | Path,
        http_client: httpx.AsyncClient | None = None,
        download_timeout: float = 60.0,
        download_policy: RetryPolicy | None = None,
    ):
        self.projects_dir = Path(projects_dir)
        self._http = http_client or httpx.AsyncClient(
            timeout=download_timeout, follow_redirects=True
        )
        self._owns_client = http_client is None
        self.download_policy = download_policy or RetryPolicy(
            name="media",
            max_attempts=3,
            backoff=(1.5, 3.0),
            is_retryable=is_fal_retryable,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def project_dir(self, project_id: str) -> Path:
        return self.projects_dir / project_id

    def shot_dir(self, project_id: str, shot_id: str, kind: str) -> Path:
        return self.project_dir(project_id) / "shots" / shot_id / kind

    async def download(self, url: str) -> bytes:
        """Fetch remote media with retries on transient failures."""

        async def attempt() -> bytes:
            try:
                response = await self._http.get(url)
            except httpx.TransportError as exc:
                raise ProviderError("media", f"download failed: {str(exc) or type(exc).__name__}") from exc
            if response.is_error:
                raise ProviderError(
                    "media",
                    f"Failed to download media: {response.status_code}",
                    status=response.status_code,
                )
            return response.content

        return await self.download_policy.run(attempt)

    async def save_image(self, project_id: str, shot_id: str, result: str, prefix: str = "gen") -> str:
        target = _unique_path(self.shot_dir(project_id, shot_id, "generated"), prefix, ".png")

        data = decode_image_result(result)
        if data is None and result.startswith(("http://", "https://")):
            try:
                data = await self.download(result)
            except ProviderError as exc:
                if not exc.is_transient:
                    raise
                logger.warning("image_download_failed", shot_id=shot_id, error=exc.message)
                return result
        if data is None:
            raise CutroomError(f"Unrecognized image result for shot {shot_id}")

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("image_saved", shot_id=shot_id, file=target.name, size=len(data))
        return target.name

    async def save_video(self, project_id: str, shot_id: str, url: str) -> str:
        target = _unique_path(self.shot_dir(project_id, shot_id, "video"), "vid", ".mp4")
        try:
            data = await self.download(url)
        except ProviderError as exc:
            logger.warning("video_download_failed", shot_id=shot_id, error=exc.message)
            return url

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("video_saved", shot_id=shot_id, file=target.name, size=len(data))
        return target.name

    async def load_image(self, project_id: str, shot_id: str, ref: str) -> str:
        if is_external_media_ref(ref):
            return ref
        path = self.shot_dir(project_id, shot_id, "generated") / ref
        if not path.is_file():
            raise InvalidRequestError(f"Source image file not found: {ref}")
        return to_data_url(path.read_bytes(), image_mime_type(ref))

    async def load_references(self, project_id: str, asset_refs: Sequence[str]) -> list[str]:
        images_dir = self.project_dir(project_id) / "brief" / "images"
        refs = []
        for name in asset_refs:
            path = images_dir / Path(name).name
            mime_type = image_mime_type(name)
            if mime_type == "image/svg+xml" or not path.is_file():
                continue
            size = path.stat().st_size
            if size > MAX_REFERENCE_BYTES:
                logger.info("reference_skipped", file=name, reason="too_large", size=size)
                continue
            refs.append(to_data_url(path.read_bytes(), mime_type))
        return refs


def _unique_path(directory: Path, prefix: str, suffix: str) -> Path:
    stamp = int(time.time() * 1000)
    path = directory / f"{prefix}_{stamp}{suffix}"
    while path.exists():
        stamp += 1
        path = directory / f"{prefix}_{stamp}{suffix}"
    return path
