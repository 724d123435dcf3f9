"""Shared httpx plumbing for REST-based providers.

Maps transport failures and non-2xx responses onto ``ProviderError`` so every
adapter reports retryability the same way.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from thotnet.core.generation.models import GeneratedImage
from thotnet.core.providers.errors import (
    ProviderError,
    ProviderResponseError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)

# Max characters of a response body kept in errors
_BODY_SNIPPET_CHARS = 300


class HttpTransport:
    """Thin request helper bound to one provider.

    Args:
        provider_id: Provider reported in errors.
        timeout: Request timeout in seconds.
        client: Optional shared client. When None a short-lived client is
            created per request.
    """

    def __init__(
        self,
        provider_id: str,
        *,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._timeout = timeout
        self._client = client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, timeout=self._timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Request timed out: {method} {url}",
                provider_id=self._provider_id,
                retryable=True,
                cause=e,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"Network error: {e}",
                provider_id=self._provider_id,
                retryable=True,
                cause=e,
            ) from e

        if response.is_error:
            raise ProviderError(
                f"HTTP error from {method} {response.url.host}{response.url.path}",
                provider_id=self._provider_id,
                status_code=response.status_code,
                response_body_snippet=response.text[:_BODY_SNIPPET_CHARS],
            )
        return response

    async def post_json(
        self,
        url: str,
        body: Any,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        """POST a JSON body and decode the JSON response.

        Raises:
            ProviderError: On transport failure or non-2xx status.
            ProviderResponseError: If the response is not valid JSON.
        """
        response = await self._send("POST", url, json=body, headers=headers, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderResponseError(
                "Response is not valid JSON",
                provider_id=self._provider_id,
                retryable=True,
                response_body_snippet=response.text[:_BODY_SNIPPET_CHARS],
                cause=e,
            ) from e

    async def post(
        self,
        url: str,
        body: Any,
        *,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """POST a JSON body and return the raw response."""
        return await self._send("POST", url, json=body, headers=headers)

    async def download_image(self, url: str) -> GeneratedImage:
        """Fetch an image URL returned by a provider."""
        response = await self._send("GET", url)
        mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        return GeneratedImage(data=response.content, mime_type=mime_type or "image/png")


def decode_base64_image(
    data: str, mime_type: str = "image/png", *, provider_id: str
) -> GeneratedImage:
    """Decode base64 (optionally a data URL) into a GeneratedImage.

    Raises:
        ProviderResponseError: If the payload is not valid base64.
    """
    if data.startswith("data:") and "," in data:
        header, data = data.split(",", 1)
        mime_type = header[5:].split(";")[0] or mime_type
    try:
        raw = base64.b64decode(data, validate=True)
    except ValueError as e:
        raise ProviderResponseError(
            "Image payload is not valid base64",
            provider_id=provider_id,
            retryable=True,
            cause=e,
        ) from e
    return GeneratedImage(data=raw, mime_type=mime_type)
