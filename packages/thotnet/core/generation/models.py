"""Models for the generation cascade.

Requests, attempts, artifacts and results exchanged between the idempotency
key computer, the cascade orchestrator, the fallback generator and the
persistence writer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Source tags for artifacts not produced by a provider
FALLBACK_SOURCE = "fallback"
MANUAL_SOURCE = "manual"

CONFLICT_KEY_SEPARATOR = "|"


def _escape_key_part(value: str) -> str:
    # Escape backslash first so escaped separators stay unambiguous
    return value.replace("\\", "\\\\").replace(CONFLICT_KEY_SEPARATOR, "\\" + CONFLICT_KEY_SEPARATOR)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


class ContentKind(str, Enum):
    """Kind of content being generated."""

    TEXT = "text"
    IMAGE = "image"


class AttemptOutcome(str, Enum):
    """Outcome of a single provider attempt."""

    SUCCESS = "success"
    REJECTED_BY_GATE = "rejected_by_gate"
    PROVIDER_ERROR = "provider_error"


class PipelineState(str, Enum):
    """States a request passes through inside the pipeline."""

    REQUESTED = "requested"
    KEY_COMPUTED = "key_computed"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CASCADING = "cascading"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"
    FALLBACK = "fallback"
    PERSISTING = "persisting"
    DONE = "done"
    PERSISTENCE_FAILED = "persistence_failed"


class TargetIdentity(BaseModel):
    """Names what is being generated; the unit of idempotence.

    Attributes:
        subject_id: Owning subject (module, article, course).
        locale: Content locale (e.g. 'en', 'es').
        variant: Content variant or visual style (e.g. 'textbook', 'header').
        slot_id: Optional slot within the subject (e.g. a section anchor).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    subject_id: str
    locale: str
    variant: str
    slot_id: str | None = None

    @field_validator("subject_id", "locale", "variant")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("slot_id")
    @classmethod
    def _strip_slot(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def conflict_key(self) -> str:
        """Stable key naming the canonical record for this target.

        Fields are joined with ``|``; backslashes and separators inside a field
        are backslash-escaped, so distinct targets never share a key.
        """
        parts = [self.subject_id, self.locale, self.variant, self.slot_id or ""]
        return CONFLICT_KEY_SEPARATOR.join(_escape_key_part(part) for part in parts)

    def as_columns(self) -> dict[str, Any]:
        """Target fields as record columns."""
        return {
            "subject_id": self.subject_id,
            "locale": self.locale,
            "variant": self.variant,
            "slot_id": self.slot_id,
        }


class GenerationOptions(BaseModel):
    """Options that affect generated output.

    Everything here feeds the idempotency key except keys inside ``extra``
    and ``anchor`` that look volatile (timestamps, session ids, counters).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    system_prompt: str | None = None
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    negative_prompt: str | None = None
    anchor: dict[str, Any] | None = None
    category: str | None = None
    title: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class GenerationRequest(BaseModel):
    """One caller invocation; discarded after the call.

    ``session_id`` and ``requested_at`` are diagnostic only and never
    participate in the idempotency key.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ContentKind
    target: TargetIdentity
    provider_order: list[str]
    payload: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    session_id: str | None = None
    requested_at: datetime = Field(default_factory=utc_now)


class GenerationAttempt(BaseModel):
    """A single recorded provider attempt. Never mutated once recorded."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider_id: str
    model: str | None = None
    attempt_number: int = Field(ge=1)
    started_at: datetime
    duration_ms: float = Field(default=0.0, ge=0.0)
    outcome: AttemptOutcome
    error_detail: str | None = None


class GeneratedImage(BaseModel):
    """Raw image bytes returned by a provider."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    data: bytes
    mime_type: str = "image/png"


class ProviderOutcome(BaseModel):
    """Result of one provider call.

    Attributes:
        success: Whether the provider returned content.
        provider_id: Provider that produced the outcome.
        model: Model reported by the provider (if any).
        content: Text output for text providers.
        images: Image outputs for image providers.
        error: Error description when success is False.
        retryable: Whether retrying the same provider may help.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    provider_id: str
    model: str | None = None
    content: str | None = None
    images: list[GeneratedImage] = Field(default_factory=list)
    error: str | None = None
    retryable: bool = True


class ArtifactContent(BaseModel):
    """Generated payload held in memory until it is stored."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ContentKind
    text: str | None = None
    data: bytes | None = None
    mime_type: str = "text/markdown"

    def as_bytes(self) -> bytes:
        """Payload as bytes, encoding text as UTF-8."""
        if self.data is not None:
            return self.data
        return (self.text or "").encode("utf-8")


class Artifact(BaseModel):
    """The persisted unit.

    Attributes:
        target: Target this artifact is canonical for.
        checksum: Idempotency key of the request that produced it.
        storage_location: Blob location; None until stored.
        metadata: Free-form metadata (attempt summary, prompt excerpt).
        source_tag: Provider id, 'fallback' or 'manual'.
        created_at: Creation time.
        kind: Content kind.
        model: Model that produced the content.
        mime_type: Stored content type.
        content_hash: SHA-256 of the stored bytes.
        content: In-memory content; never serialized to records.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: TargetIdentity
    checksum: str
    storage_location: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_tag: str
    created_at: datetime = Field(default_factory=utc_now)
    kind: ContentKind = ContentKind.TEXT
    model: str | None = None
    mime_type: str | None = None
    content_hash: str | None = None
    content: ArtifactContent | None = Field(default=None, exclude=True, repr=False)

    @property
    def is_fallback(self) -> bool:
        return self.source_tag == FALLBACK_SOURCE


class GenerationResult(BaseModel):
    """What the caller receives.

    ``success`` is True whenever an artifact was produced, including fallback
    artifacts; inspect ``used_fallback`` and ``attempts`` to react.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    artifact: Artifact | None = None
    provider: str | None = None
    model: str | None = None
    attempts: list[GenerationAttempt] = Field(default_factory=list)
    checksum: str
    used_fallback: bool = False
    cache_hit: bool = False
    state: PipelineState = PipelineState.DONE
