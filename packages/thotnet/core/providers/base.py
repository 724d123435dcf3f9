"""Provider adapter protocol and shared outcome helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol, runtime_checkable

from thotnet.core.generation.models import ContentKind, GenerationOptions, ProviderOutcome
from thotnet.core.providers.errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported provider implementations."""

    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    OPENAI_IMAGE = "openai_image"
    GEMINI_IMAGE = "gemini_image"
    RUNWARE = "runware"
    HUGGINGFACE = "huggingface"
    QWEN = "qwen"


@runtime_checkable
class ProviderAdapter(Protocol):
    """One external generation service.

    Implementations must:
    - Check credential presence at call time and fail without a network call
      when missing
    - Convert transport failures into failed outcomes (never raise for them)
    - Mark failures retryable only when the same call may succeed later
    """

    @property
    def provider_id(self) -> str:
        """Identifier used in provider orders and attempt trails."""
        ...

    @property
    def kind(self) -> ContentKind:
        """Content kind this provider produces."""
        ...

    def is_configured(self) -> bool:
        """Whether credentials required by the provider are present."""
        ...

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        """Generate content for a prompt.

        Args:
            payload: Prompt or source content.
            options: Output-affecting options.

        Returns:
            ProviderOutcome describing success or failure.
        """
        ...


def failure_outcome(error: ProviderError, model: str | None = None) -> ProviderOutcome:
    """Convert a provider error into a failed outcome."""
    logger.warning("Provider %s failed: %s", error.provider_id, error)
    return ProviderOutcome(
        success=False,
        provider_id=error.provider_id,
        model=model,
        error=str(error),
        retryable=error.retryable,
    )
