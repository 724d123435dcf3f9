"""Provider registry and factory.

Maps provider ids to adapters; the orchestrator resolves a request's
provider order against it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

from thotnet.core.generation.errors import RequestValidationError
from thotnet.core.generation.models import ContentKind
from thotnet.core.providers.anthropic import AnthropicTextProvider
from thotnet.core.providers.base import ProviderAdapter, ProviderType
from thotnet.core.providers.gemini import GeminiImageProvider, GeminiTextProvider
from thotnet.core.providers.images import (
    HuggingFaceImageProvider,
    QwenImageProvider,
    RunwareImageProvider,
)
from thotnet.core.providers.ollama import OllamaTextProvider
from thotnet.core.providers.openai import OpenAIImageProvider, OpenAITextProvider

if TYPE_CHECKING:
    from thotnet.core.config.models import AppConfig, ProviderConfig

logger = logging.getLogger(__name__)

_ADAPTERS: dict[ProviderType, type] = {
    ProviderType.OPENAI: OpenAITextProvider,
    ProviderType.GEMINI: GeminiTextProvider,
    ProviderType.ANTHROPIC: AnthropicTextProvider,
    ProviderType.OPENAI_IMAGE: OpenAIImageProvider,
    ProviderType.GEMINI_IMAGE: GeminiImageProvider,
    ProviderType.RUNWARE: RunwareImageProvider,
    ProviderType.HUGGINGFACE: HuggingFaceImageProvider,
    ProviderType.QWEN: QwenImageProvider,
}


class ProviderRegistry:
    """Provider id → adapter mapping."""

    def __init__(self, providers: Iterable[ProviderAdapter] = ()) -> None:
        self._providers: dict[str, ProviderAdapter] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ProviderAdapter) -> None:
        """Add an adapter, replacing any adapter with the same id."""
        if provider.provider_id in self._providers:
            logger.warning("Replacing provider '%s'", provider.provider_id)
        self._providers[provider.provider_id] = provider

    def get(self, provider_id: str) -> ProviderAdapter:
        """Look up an adapter.

        Raises:
            KeyError: If no adapter has this id
        """
        return self._providers[provider_id]

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    def ids(self) -> list[str]:
        return list(self._providers)

    def resolve(self, order: Iterable[str], kind: ContentKind) -> list[ProviderAdapter]:
        """Resolve an ordered list of ids into adapters.

        Args:
            order: Provider ids in priority order. Duplicates keep their
                first position.
            kind: Content kind every provider must produce.

        Returns:
            Adapters in order.

        Raises:
            RequestValidationError: If the order is empty, names an unknown
                provider, or names a provider of the wrong kind.
        """
        resolved: list[ProviderAdapter] = []
        for provider_id in dict.fromkeys(order):
            if provider_id not in self._providers:
                raise RequestValidationError(
                    f"Unknown provider '{provider_id}'", field="provider_order"
                )
            provider = self._providers[provider_id]
            if provider.kind != kind:
                raise RequestValidationError(
                    f"Provider '{provider_id}' produces {provider.kind.value}, not {kind.value}",
                    field="provider_order",
                )
            resolved.append(provider)
        if not resolved:
            raise RequestValidationError("Provider order is empty", field="provider_order")
        return resolved


def create_provider(config: ProviderConfig) -> ProviderAdapter:
    """Instantiate the adapter described by a provider config.

    Raises:
        ValueError: If the provider type is not supported
    """
    if config.type == ProviderType.OLLAMA:
        kwargs: dict[str, object] = {"timeout": config.timeout_seconds}
        if config.model:
            kwargs["model"] = config.model
        if config.base_url:
            kwargs["base_url"] = config.base_url
        return OllamaTextProvider(config.id, **kwargs)  # type: ignore[arg-type]

    adapter_cls = _ADAPTERS.get(config.type)
    if adapter_cls is None:
        raise ValueError(f"Unsupported provider type: {config.type}")

    kwargs = {
        "api_key": config.api_key,
        "timeout": config.timeout_seconds,
        "credential_name": config.api_key_env or f"{config.id.upper()}_API_KEY",
    }
    if config.model:
        kwargs["model"] = config.model
    if config.base_url:
        kwargs["base_url"] = config.base_url
    return adapter_cls(config.id, **kwargs)  # type: ignore[no-any-return]


def build_provider_registry(config: AppConfig) -> ProviderRegistry:
    """Create a registry holding every enabled provider in the app config."""
    registry = ProviderRegistry()
    for provider_config in config.providers:
        if not provider_config.enabled:
            continue
        registry.register(create_provider(provider_config))
        if not provider_config.has_credentials:
            logger.debug("Provider '%s' registered without credentials", provider_config.id)
    return registry
