"""Shared HTTP plumbing for provider clients."""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any

import httpx

from cutroom.common.errors import ProviderError
from cutroom.common.logging import get_logger
from cutroom.providers.retry import RetryPolicy

logger = get_logger(__name__)

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def decode_data_url(value: str) -> tuple[str, bytes] | None:
    """``(mime_type, bytes)`` for a base64 data URL, else None."""
    match = _DATA_URL.match(value)
    if not match:
        return None
    try:
        return match.group(1), base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        return None


def describe_error_body(body: Any) -> str:
    """Best-effort human message from a provider error payload."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        detail = body.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        if detail:
            return json.dumps(detail)
        if body.get("message"):
            return str(body["message"])
    if isinstance(body, str):
        return body
    return json.dumps(body) if body is not None else ""


class ProviderClient:
    """Base class for HTTP provider clients.

    Subclasses set ``provider`` and build requests with ``_send``. A client
    may be given an existing ``httpx.AsyncClient`` (tests pass one backed by
    ``httpx.MockTransport``); otherwise it owns and closes its own.
    """

    provider: str = ""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy(name=self.provider)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            ProviderError: on non-2xx status or transport failure
        """
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise ProviderError(
                self.provider,
                f"{self.provider} request failed: {str(exc) or type(exc).__name__}",
            ) from exc

        if response.is_error:
            body = _decode_body(response)
            raise ProviderError(
                self.provider,
                f"{self.provider} API error ({response.status_code}): {describe_error_body(body)}",
                status=response.status_code,
                body=body,
            )

        body = _decode_body(response)
        if not isinstance(body, (dict, list)):
            raise ProviderError(
                self.provider,
                f"{self.provider} returned a non-JSON response",
                status=response.status_code,
                body=body,
            )
        return body


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
