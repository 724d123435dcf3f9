"""Local Ollama text provider.

Needs no credential; it is always considered configured and fails with a
connection error when the local server is not running.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from thotnet.core.generation.models import ContentKind, GenerationOptions, ProviderOutcome
from thotnet.core.providers.base import failure_outcome
from thotnet.core.providers.errors import ProviderError, ProviderResponseError
from thotnet.core.providers.http import HttpTransport

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"


class OllamaTextProvider:
    """Offline text generation via Ollama's ``/api/generate``."""

    kind = ContentKind.TEXT

    def __init__(
        self,
        provider_id: str = "ollama",
        *,
        model: str = "llama3.1:8b",
        base_url: str = OLLAMA_BASE_URL,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._http = HttpTransport(provider_id, timeout=timeout, client=client)

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def is_configured(self) -> bool:
        return True

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        ollama_options: dict[str, Any] = {"num_predict": options.max_tokens or 4000}
        if options.temperature is not None:
            ollama_options["temperature"] = options.temperature
        body: dict[str, Any] = {
            "model": model,
            "prompt": payload,
            "stream": False,
            "options": ollama_options,
        }
        if options.system_prompt:
            body["system"] = options.system_prompt

        try:
            data = await self._http.post_json(f"{self._base_url}/api/generate", body)
            if "response" not in data:
                raise ProviderResponseError(
                    data.get("error") or "Response has no 'response' field",
                    provider_id=self._provider_id,
                    retryable=False,
                )
        except ProviderError as e:
            return failure_outcome(e, model)

        return ProviderOutcome(
            success=True,
            provider_id=self._provider_id,
            model=data.get("model") or model,
            content=data["response"],
        )
