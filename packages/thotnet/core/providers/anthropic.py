"""Anthropic Messages API text provider."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from thotnet.core.generation.models import ContentKind, GenerationOptions, ProviderOutcome
from thotnet.core.providers.base import failure_outcome
from thotnet.core.providers.errors import (
    ProviderError,
    ProviderNotConfiguredError,
    ProviderResponseError,
)
from thotnet.core.providers.http import HttpTransport

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicTextProvider:
    """Claude text generation over the Messages REST endpoint."""

    kind = ContentKind.TEXT

    def __init__(
        self,
        provider_id: str = "anthropic",
        *,
        model: str = "claude-sonnet-4-5",
        api_key: str | None = None,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout: float = 120.0,
        credential_name: str = "ANTHROPIC_API_KEY",
        client: httpx.AsyncClient | None = None,
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

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": options.max_tokens or 4000,
            "messages": [{"role": "user", "content": payload}],
        }
        if options.system_prompt:
            body["system"] = options.system_prompt
        if options.temperature is not None:
            # Messages API caps temperature at 1.0
            body["temperature"] = min(options.temperature, 1.0)

        try:
            if not self._api_key:
                raise ProviderNotConfiguredError(self._provider_id, self._credential_name)
            data = await self._http.post_json(
                f"{self._base_url}/v1/messages",
                body,
                headers={"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION},
            )
            blocks = data.get("content") or []
            if not blocks:
                raise ProviderResponseError("Response has no content blocks", provider_id=self._provider_id)
        except ProviderError as e:
            return failure_outcome(e, model)

        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        return ProviderOutcome(
            success=True,
            provider_id=self._provider_id,
            model=data.get("model") or model,
            content=text,
        )
