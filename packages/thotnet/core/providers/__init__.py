"""Generation provider adapters and registry."""

from thotnet.core.providers.anthropic import AnthropicTextProvider
from thotnet.core.providers.base import ProviderAdapter, ProviderType, failure_outcome
from thotnet.core.providers.errors import (
    ProviderError,
    ProviderNotConfiguredError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from thotnet.core.providers.gemini import GeminiImageProvider, GeminiTextProvider
from thotnet.core.providers.images import (
    HuggingFaceImageProvider,
    QwenImageProvider,
    RunwareImageProvider,
)
from thotnet.core.providers.ollama import OllamaTextProvider
from thotnet.core.providers.openai import OpenAIImageProvider, OpenAITextProvider
from thotnet.core.providers.registry import (
    ProviderRegistry,
    build_provider_registry,
    create_provider,
)

__all__ = [
    "ProviderAdapter",
    "ProviderType",
    "failure_outcome",
    "ProviderError",
    "ProviderNotConfiguredError",
    "ProviderResponseError",
    "ProviderTimeoutError",
    "ProviderRegistry",
    "build_provider_registry",
    "create_provider",
    # Text
    "AnthropicTextProvider",
    "GeminiTextProvider",
    "OllamaTextProvider",
    "OpenAITextProvider",
    # Image
    "GeminiImageProvider",
    "HuggingFaceImageProvider",
    "OpenAIImageProvider",
    "QwenImageProvider",
    "RunwareImageProvider",
]
