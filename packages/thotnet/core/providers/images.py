"""REST image providers: Runware, Hugging Face inference and Qwen-Image.

Runware and Qwen may answer with inline base64 or with a URL; URLs are
downloaded so every outcome carries raw bytes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Any

import httpx

from thotnet.core.generation.models import (
    ContentKind,
    GeneratedImage,
    GenerationOptions,
    ProviderOutcome,
)
from thotnet.core.providers.base import failure_outcome
from thotnet.core.providers.errors import (
    ProviderError,
    ProviderNotConfiguredError,
    ProviderResponseError,
)
from thotnet.core.providers.http import HttpTransport, decode_base64_image

logger = logging.getLogger(__name__)

RUNWARE_URL = "https://api.runware.ai/v1/runs"
HUGGINGFACE_URL = "https://router.huggingface.co/models"
QWEN_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc/image-generation/text2image"

DEFAULT_WIDTH = 1024
DEFAULT_HEIGHT = 576


class _BearerImageProvider(ABC):
    """Shared plumbing for bearer-token image services."""

    kind = ContentKind.IMAGE

    def __init__(
        self,
        provider_id: str,
        *,
        model: str,
        api_key: str | None,
        base_url: str,
        timeout: float,
        credential_name: str,
        client: httpx.AsyncClient | None,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._credential_name = credential_name
        self._http = HttpTransport(provider_id, timeout=timeout, client=client)

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ProviderNotConfiguredError(self._provider_id, self._credential_name)
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _image_from_entry(self, entry: dict[str, Any], b64_keys: tuple[str, ...]) -> GeneratedImage:
        mime_type = entry.get("mime_type") or "image/png"
        for key in b64_keys:
            if entry.get(key):
                return decode_base64_image(entry[key], mime_type, provider_id=self._provider_id)
        url = entry.get("url") or entry.get("image_url")
        if url:
            return await self._http.download_image(url)
        raise ProviderResponseError("Response has no image payload", provider_id=self._provider_id)

    @abstractmethod
    async def _request(self, payload: str, options: GenerationOptions, model: str) -> list[GeneratedImage]:
        """Call the service and return decoded images."""

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        try:
            images = await self._request(payload, options, model)
        except ProviderError as e:
            return failure_outcome(e, model)
        return ProviderOutcome(success=True, provider_id=self._provider_id, model=model, images=images)


class RunwareImageProvider(_BearerImageProvider):
    """Runware image inference."""

    def __init__(
        self,
        provider_id: str = "runware",
        *,
        model: str = "runware:97@1",
        api_key: str | None = None,
        base_url: str = RUNWARE_URL,
        timeout: float = 120.0,
        credential_name: str = "RUNWARE_API_KEY",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            provider_id,
            model=model,
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            credential_name=credential_name,
            client=client,
        )

    async def _request(self, payload: str, options: GenerationOptions, model: str) -> list[GeneratedImage]:
        body: dict[str, Any] = {
            "model": model,
            "input": {
                "prompt": payload,
                "num_images": 1,
                "width": options.width or DEFAULT_WIDTH,
                "height": options.height or DEFAULT_HEIGHT,
            },
        }
        if options.negative_prompt:
            body["input"]["negative_prompt"] = options.negative_prompt

        data = await self._http.post_json(self._base_url, body, headers=self._headers())

        # Output nesting differs between API versions
        containers = [
            data.get("output"),
            (data.get("data") or {}).get("output") if isinstance(data.get("data"), dict) else None,
            data,
            data.get("result"),
        ]
        entries: list[dict[str, Any]] = []
        for container in containers:
            if isinstance(container, dict) and isinstance(container.get("images"), list):
                entries = container["images"]
                break
        if not entries:
            raise ProviderResponseError("Runware returned no image payload", provider_id=self._provider_id)
        image = await self._image_from_entry(entries[0], ("image_base64", "base64", "b64_json", "data"))
        return [image]


class HuggingFaceImageProvider(_BearerImageProvider):
    """Hugging Face inference router text-to-image.

    The endpoint answers with raw image bytes; a JSON body means an error.
    """

    def __init__(
        self,
        provider_id: str = "huggingface",
        *,
        model: str = "black-forest-labs/FLUX.1-dev",
        api_key: str | None = None,
        base_url: str = HUGGINGFACE_URL,
        timeout: float = 180.0,
        credential_name: str = "HUGGINGFACE_API_KEY",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            provider_id,
            model=model,
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            credential_name=credential_name,
            client=client,
        )

    async def _request(self, payload: str, options: GenerationOptions, model: str) -> list[GeneratedImage]:
        body = {
            "inputs": payload,
            "parameters": {
                "width": options.width or DEFAULT_WIDTH,
                "height": options.height or DEFAULT_HEIGHT,
                "guidance_scale": 4.5,
                "num_inference_steps": 28,
            },
        }
        response = await self._http.post(f"{self._base_url}/{model}", body, headers=self._headers())
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type == "application/json":
            error = response.json().get("error") if response.content else None
            raise ProviderResponseError(
                error or "Response has no image data", provider_id=self._provider_id
            )
        return [GeneratedImage(data=response.content, mime_type=content_type or "image/png")]


class QwenImageProvider(_BearerImageProvider):
    """Alibaba DashScope Qwen-Image text-to-image."""

    def __init__(
        self,
        provider_id: str = "qwen",
        *,
        model: str = "qwen-image",
        api_key: str | None = None,
        base_url: str = QWEN_URL,
        timeout: float = 180.0,
        credential_name: str = "QWEN_IMAGE_API_KEY",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            provider_id,
            model=model,
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            credential_name=credential_name,
            client=client,
        )

    async def _request(self, payload: str, options: GenerationOptions, model: str) -> list[GeneratedImage]:
        width = options.width or DEFAULT_WIDTH
        height = options.height or DEFAULT_HEIGHT
        body = {
            "model": model,
            "input": {"prompt": payload},
            "parameters": {"size": f"{width}*{height}", "n": 1},
        }
        data = await self._http.post_json(self._base_url, body, headers=self._headers())
        results = (data.get("output") or {}).get("results") or []
        if not results:
            raise ProviderResponseError(
                data.get("message") or "Qwen-Image returned no image",
                provider_id=self._provider_id,
            )
        return [await self._image_from_entry(results[0], ("image_base64",))]
