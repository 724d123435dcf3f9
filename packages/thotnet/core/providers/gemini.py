"""Google Gemini providers (Generative Language REST API)."""

from __future__ import annotations

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

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _aspect_ratio(width: int | None, height: int | None) -> str:
    """Closest supported aspect ratio for the requested size."""
    if not width or not height:
        return "16:9"
    ratio = width / height
    candidates = {"1:1": 1.0, "4:3": 4 / 3, "3:2": 3 / 2, "16:9": 16 / 9, "3:4": 3 / 4, "9:16": 9 / 16}
    return min(candidates, key=lambda name: abs(candidates[name] - ratio))


def _candidate_parts(provider_id: str, data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback", {}).get("blockReason")
        raise ProviderResponseError(
            f"No candidates returned{f' (blocked: {feedback})' if feedback else ''}",
            provider_id=provider_id,
            retryable=feedback is None,
        )
    return candidates[0].get("content", {}).get("parts") or []


class _GeminiBase:
    _provider_id: str
    _api_key: str | None
    _base_url: str
    _credential_name: str
    _http: HttpTransport

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _generate_content(self, model: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key:
            raise ProviderNotConfiguredError(self._provider_id, self._credential_name)
        return await self._http.post_json(
            f"{self._base_url}/models/{model}:generateContent",
            body,
            headers={"x-goog-api-key": self._api_key},
        )


class GeminiTextProvider(_GeminiBase):
    """Gemini text generation."""

    kind = ContentKind.TEXT

    def __init__(
        self,
        provider_id: str = "gemini",
        *,
        model: str = "gemini-2.5-flash",
        api_key: str | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 60.0,
        credential_name: str = "GEMINI_API_KEY",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._credential_name = credential_name
        self._http = HttpTransport(provider_id, timeout=timeout, client=client)

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        generation_config: dict[str, Any] = {"maxOutputTokens": options.max_tokens or 4000}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": payload}]}],
            "generationConfig": generation_config,
        }
        if options.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}

        try:
            data = await self._generate_content(model, body)
            parts = _candidate_parts(self._provider_id, data)
        except ProviderError as e:
            return failure_outcome(e, model)

        text = "".join(part.get("text", "") for part in parts)
        return ProviderOutcome(success=True, provider_id=self._provider_id, model=model, content=text)


class GeminiImageProvider(_GeminiBase):
    """Gemini image generation via inline image parts."""

    kind = ContentKind.IMAGE

    def __init__(
        self,
        provider_id: str = "gemini",
        *,
        model: str = "gemini-2.5-flash-image",
        api_key: str | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 120.0,
        credential_name: str = "GEMINI_API_KEY",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._credential_name = credential_name
        self._http = HttpTransport(provider_id, timeout=timeout, client=client)

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        body = {
            "contents": [{"parts": [{"text": payload}]}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": _aspect_ratio(options.width, options.height)},
            },
        }

        try:
            data = await self._generate_content(model, body)
            parts = _candidate_parts(self._provider_id, data)
            images: list[GeneratedImage] = [
                decode_base64_image(
                    part["inlineData"]["data"],
                    part["inlineData"].get("mimeType", "image/png"),
                    provider_id=self._provider_id,
                )
                for part in parts
                if part.get("inlineData", {}).get("data")
            ]
            if not images:
                raise ProviderResponseError("No image data in response", provider_id=self._provider_id)
        except ProviderError as e:
            return failure_outcome(e, model)

        return ProviderOutcome(success=True, provider_id=self._provider_id, model=model, images=images)
