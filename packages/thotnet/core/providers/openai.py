"""OpenAI and OpenAI-compatible providers.

The text adapter serves any chat-completions compatible service (Groq,
DeepSeek, Mistral, OpenRouter) through ``base_url``.
"""

from __future__ import annotations

import base64
import logging

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)

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
    ProviderTimeoutError,
    is_retryable_status,
)

logger = logging.getLogger(__name__)

# Errors worth retrying
_RETRYABLE_ERRORS = (APIConnectionError, RateLimitError)

DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7

# gpt-image supported sizes
_SUPPORTED_SIZES = {"1024x1024", "1024x1536", "1536x1024"}


def _select_api_size(width: int, height: int) -> str:
    """Smallest supported size covering the target (resizing happens downstream)."""
    exact = f"{width}x{height}"
    if exact in _SUPPORTED_SIZES:
        return exact
    if width <= 1024 and height <= 1024:
        return "1024x1024"
    if width <= 1024:
        return "1024x1536"
    if height <= 1024:
        return "1536x1024"
    return "auto"


def _translate_error(provider_id: str, e: OpenAIError) -> ProviderError:
    """Map an SDK exception onto the provider error hierarchy."""
    if isinstance(e, APITimeoutError):
        return ProviderTimeoutError(str(e), provider_id=provider_id, retryable=True, cause=e)
    if isinstance(e, _RETRYABLE_ERRORS):
        status = getattr(e, "status_code", None)
        return ProviderError(str(e), provider_id=provider_id, status_code=status, retryable=True, cause=e)
    if isinstance(e, APIStatusError):
        return ProviderError(
            e.message,
            provider_id=provider_id,
            status_code=e.status_code,
            retryable=is_retryable_status(e.status_code),
            cause=e,
        )
    return ProviderError(str(e), provider_id=provider_id, retryable=False, cause=e)


class _OpenAIClientMixin:
    """Lazy AsyncOpenAI construction shared by text and image adapters."""

    _provider_id: str
    _api_key: str | None
    _base_url: str | None
    _timeout: float
    _credential_name: str
    _client: AsyncOpenAI | None

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def is_configured(self) -> bool:
        return bool(self._api_key) or self._client is not None

    def _get_client(self) -> AsyncOpenAI:
        if not self.is_configured():
            raise ProviderNotConfiguredError(self._provider_id, self._credential_name)
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key, base_url=self._base_url, timeout=self._timeout
            )
        return self._client


class OpenAITextProvider(_OpenAIClientMixin):
    """Chat-completions text provider.

    Args:
        provider_id: Identifier used in provider orders (e.g. 'groq').
        model: Default model name.
        api_key: API key; the provider is skipped when missing.
        base_url: Override for OpenAI-compatible services.
        timeout: Request timeout in seconds.
        credential_name: Credential name reported when the key is missing.
        client: Pre-built client (tests).
    """

    kind = ContentKind.TEXT

    def __init__(
        self,
        provider_id: str = "openai",
        *,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        credential_name: str = "OPENAI_API_KEY",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._credential_name = credential_name
        self._client = client

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        messages: list[dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": payload})

        try:
            client = self._get_client()
            try:
                response = await client.chat.completions.create(
                    model=model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=(
                        options.temperature
                        if options.temperature is not None
                        else DEFAULT_TEMPERATURE
                    ),
                    max_tokens=options.max_tokens or DEFAULT_MAX_TOKENS,
                )
            except OpenAIError as e:
                raise _translate_error(self._provider_id, e) from e

            if not response.choices:
                raise ProviderResponseError("API returned no choices", provider_id=self._provider_id)
            content = response.choices[0].message.content or ""
        except ProviderError as e:
            return failure_outcome(e, model)

        logger.debug("%s returned %d chars", self._provider_id, len(content))
        return ProviderOutcome(
            success=True,
            provider_id=self._provider_id,
            model=response.model or model,
            content=content,
        )


class OpenAIImageProvider(_OpenAIClientMixin):
    """OpenAI Images API provider returning base64 PNGs."""

    kind = ContentKind.IMAGE

    def __init__(
        self,
        provider_id: str = "openai_image",
        *,
        model: str = "gpt-image-1",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        credential_name: str = "OPENAI_API_KEY",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._credential_name = credential_name
        self._client = client

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        model = options.model or self._model
        size = _select_api_size(options.width or 1024, options.height or 1024)

        try:
            client = self._get_client()
            try:
                response = await client.images.generate(
                    model=model,
                    prompt=payload,
                    n=1,
                    size=size,  # type: ignore[arg-type]
                )
            except OpenAIError as e:
                raise _translate_error(self._provider_id, e) from e

            if not response.data:
                raise ProviderResponseError("API returned empty data list", provider_id=self._provider_id)
            b64_data = response.data[0].b64_json
            if not b64_data:
                raise ProviderResponseError("API returned empty b64_json", provider_id=self._provider_id)
        except ProviderError as e:
            return failure_outcome(e, model)

        return ProviderOutcome(
            success=True,
            provider_id=self._provider_id,
            model=model,
            images=[GeneratedImage(data=base64.b64decode(b64_data), mime_type="image/png")],
        )
