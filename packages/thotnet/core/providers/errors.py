"""Provider error hierarchy.

Adapters raise these internally and convert them to failed
``ProviderOutcome`` values at their boundary.
"""

from __future__ import annotations

# Statuses worth retrying on the same provider
RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})


def is_retryable_status(status_code: int | None) -> bool:
    """Whether an HTTP status indicates a transient failure."""
    if status_code is None:
        return True
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class ProviderError(Exception):
    """A single provider call failed.

    Attributes:
        message: Human-readable error description.
        provider_id: Provider that failed.
        status_code: HTTP status code (if available).
        retryable: Whether retrying the same provider may help.
        response_body_snippet: Truncated response body for debugging.
        cause: Original exception.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: str,
        status_code: int | None = None,
        retryable: bool | None = None,
        response_body_snippet: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.message = message
        self.provider_id = provider_id
        self.status_code = status_code
        self.retryable = is_retryable_status(status_code) if retryable is None else retryable
        self.response_body_snippet = response_body_snippet
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        parts = [f"[{self.provider_id}] {self.message}"]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.response_body_snippet:
            parts.append(self.response_body_snippet)
        return " | ".join(parts)


class ProviderNotConfiguredError(ProviderError):
    """Provider credentials are missing."""

    def __init__(self, provider_id: str, credential: str) -> None:
        super().__init__(f"{credential} not configured", provider_id=provider_id, retryable=False)


class ProviderTimeoutError(ProviderError):
    """Provider call timed out."""


class ProviderResponseError(ProviderError):
    """Provider returned a response without usable content."""
