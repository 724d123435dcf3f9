"""Exceptions raised by the generation pipeline.

Only ``RequestValidationError`` and ``PersistenceFailure`` ever reach a caller.
Provider failures and gate rejections are recorded as attempts, and
``ProviderExhausted`` is recovered by the fallback generator.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from thotnet.core.generation.models import GenerationAttempt, GenerationResult
    from thotnet.core.storage.errors import PersistenceError


class ThotnetError(Exception):
    """Base exception for thotnet errors."""


class RequestValidationError(ThotnetError, ValueError):
    """Malformed request; raised before any provider is called."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ProviderExhausted(ThotnetError):
    """Every provider and retry failed or was rejected."""

    def __init__(self, attempts: list[GenerationAttempt]) -> None:
        super().__init__(f"All providers exhausted after {len(attempts)} attempts")
        self.attempts = attempts


class PersistenceFailure(ThotnetError):
    """Artifact was generated but could not be stored.

    Attributes:
        result: Result with ``state == PERSISTENCE_FAILED``; its artifact still
            holds the generated content in memory.
        error: Underlying persistence error.
    """

    def __init__(self, result: GenerationResult, error: PersistenceError) -> None:
        super().__init__(f"Persistence failed ({error.reason.value}): {error}")
        self.result = result
        self.error = error

    @property
    def retryable(self) -> bool:
        """Whether retrying the whole operation later may succeed."""
        return self.error.retryable
