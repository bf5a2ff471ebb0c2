"""OpenRouter chat and image generation client."""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from cutroom.common.errors import NoMediaInResponseError
from cutroom.common.logging import get_logger
from cutroom.providers.base import ProviderClient
from cutroom.providers.cancellation import CancellationToken
from cutroom.providers.retry import RetryPolicy, openrouter_policy

logger = get_logger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

_MARKDOWN_IMAGE = re.compile(r"!\[[^\]]*\]\(([^)\s]+)\)")
_DATA_URL = re.compile(r"data:image/[\w.+-]+;base64,[A-Za-z0-9+/=]+")
_HTTP_URL = re.compile(r"https?://\S+")


class OpenRouterClient(ProviderClient):
    """Client for OpenRouter chat completions, including image output."""

    provider = "openrouter"

    def __init__(
        self,
        api_key: str,
        *,
        url: str = OPENROUTER_URL,
        referer: str = "http://localhost:5173",
        title: str = "CutRoom",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(
            api_key,
            timeout=timeout,
            http_client=http_client,
            retry_policy=retry_policy or openrouter_policy(attempt_timeout=timeout),
        )
        self.url = url
        self.referer = referer
        self.title = title

    def _auth_headers(self) -> dict[str, str]:
        return {
            **super()._auth_headers(),
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    async def _complete(self, body: dict[str, Any], cancel: CancellationToken | None) -> dict:
        async def attempt() -> dict:
            return await self._send("POST", self.url, json=body)

        return await self.retry_policy.run(attempt, cancel)

    async def chat_completion(
        self,
        model: str,
        messages: Sequence[dict[str, Any]],
        temperature: float = 0.7,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Return the text content of the first choice."""
        data = await self._complete(
            {"model": model, "messages": list(messages), "temperature": temperature},
            cancel,
        )
        message = _first_message(data)
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content
        raise NoMediaInResponseError(self.provider, "content")

    async def generate_image(
        self,
        model: str,
        prompt: str,
        reference_images: Sequence[str] = (),
        size: str | None = None,
        quality: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Generate an image and return its data URL or remote URL.

        Reference images (data URLs or URLs) are sent as ``image_url``
        parts ahead of the text instruction.
        """
        content: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": ref}} for ref in reference_images
        ]
        content.append({"type": "text", "text": prompt})

        body: dict[str, Any] = {
            "model": model,
            "modalities": ["image", "text"],
            "messages": [{"role": "user", "content": content}],
        }
        if size:
            body["size"] = size
        if quality:
            body["quality"] = quality

        logger.info(
            "openrouter_image_request",
            model=model,
            references=len(reference_images),
        )
        data = await self._complete(body, cancel)
        if cancel is not None:
            cancel.raise_if_cancelled()

        image = extract_image(_first_message(data))
        if image is None:
            raise NoMediaInResponseError(self.provider, "image")
        return image


def _first_message(data: Any) -> dict:
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message")
    return message if isinstance(message, dict) else {}


def extract_image(message: dict) -> str | None:
    """Image URL from a chat message: structured images first, then content."""
    for image in message.get("images") or []:
        if not isinstance(image, dict):
            continue
        image_url = image.get("image_url")
        url = image_url.get("url") if isinstance(image_url, dict) else image_url
        if isinstance(url, str) and url:
            return url

    content = message.get("content")
    if isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url")
                if url:
                    return url
        content = " ".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )

    if not isinstance(content, str) or not content.strip():
        return None
    return _image_from_text(content.strip())


def _image_from_text(text: str) -> str | None:
    if text.startswith("data:image/") or (text.startswith("http") and " " not in text):
        return text
    for pattern in (_MARKDOWN_IMAGE, _DATA_URL, _HTTP_URL):
        match = pattern.search(text)
        if match:
            return match.group(1) if pattern.groups else match.group(0)
    return None
