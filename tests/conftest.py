"""Shared pytest fixtures for thotnet tests."""

from __future__ import annotations

from collections.abc import Iterable

import pytest

from thotnet.core.generation.fallback import FallbackArtifactGenerator
from thotnet.core.generation.gate import ContentGate
from thotnet.core.generation.models import (
    ContentKind,
    GeneratedImage,
    GenerationOptions,
    GenerationRequest,
    ProviderOutcome,
    TargetIdentity,
)
from thotnet.core.generation.orchestrator import CascadeOrchestrator, RetryPolicy
from thotnet.core.generation.pipeline import GenerationPipeline
from thotnet.core.providers.registry import ProviderRegistry
from thotnet.core.storage.backends.memory import InMemoryBlobStore, InMemoryRecordStore
from thotnet.core.storage.writer import SchemaAdaptiveWriter

# ============================================================================
# Content samples
# ============================================================================

PLACEHOLDER_TEXT = "Content coming soon, please check back."

LONG_ARTICLE = "\n".join(
    [
        "# How neural networks learn",
        "",
        "A practical tour of gradient descent for working engineers.",
        "",
        "## Gradients",
        "",
        " ".join(["Weights move against the gradient of the loss."] * 100),
        "",
        "## Practice",
        "",
        " ".join(["Small learning rates trade speed for stability."] * 80),
        "",
        "---",
        "",
        "Further reading follows in the next module.",
    ]
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


# ============================================================================
# Fake providers
# ============================================================================


class FakeProvider:
    """Scripted provider adapter.

    Each call consumes the next scripted item; the last item repeats. Items
    may be text (success), GeneratedImage lists (success), ProviderOutcome
    instances, or exceptions (raised).
    """

    def __init__(
        self,
        provider_id: str,
        script: Iterable[object] = (),
        *,
        kind: ContentKind = ContentKind.TEXT,
        configured: bool = True,
        model: str = "fake-model",
    ) -> None:
        self._provider_id = provider_id
        self.kind = kind
        self._script = list(script) or [LONG_ARTICLE]
        self._configured = configured
        self._model = model
        self.calls: list[tuple[str, GenerationOptions]] = []

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def is_configured(self) -> bool:
        return self._configured

    async def generate(self, payload: str, options: GenerationOptions) -> ProviderOutcome:
        self.calls.append((payload, options))
        index = min(len(self.calls), len(self._script)) - 1
        item = self._script[index]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, ProviderOutcome):
            return item
        if isinstance(item, list):
            return ProviderOutcome(
                success=True, provider_id=self._provider_id, model=self._model, images=item
            )
        return ProviderOutcome(
            success=True, provider_id=self._provider_id, model=self._model, content=str(item)
        )


def failed(provider_id: str, error: str = "HTTP 503", *, retryable: bool = True) -> ProviderOutcome:
    """Failed provider outcome."""
    return ProviderOutcome(success=False, provider_id=provider_id, error=error, retryable=retryable)


def png_images() -> list[GeneratedImage]:
    return [GeneratedImage(data=PNG_BYTES, mime_type="image/png")]


# ============================================================================
# Request fixtures
# ============================================================================


@pytest.fixture
def target() -> TargetIdentity:
    return TargetIdentity(subject_id="intro-ml", locale="en", variant="textbook")


@pytest.fixture
def make_request(target: TargetIdentity):
    """Factory for generation requests."""

    def _make(
        payload: str = "Explain how neural networks learn.",
        *,
        kind: ContentKind = ContentKind.TEXT,
        provider_order: list[str] | None = None,
        options: GenerationOptions | None = None,
        **target_overrides: str,
    ) -> GenerationRequest:
        request_target = target.model_copy(update=target_overrides) if target_overrides else target
        return GenerationRequest(
            kind=kind,
            target=request_target,
            provider_order=provider_order or ["p1"],
            payload=payload,
            options=options or GenerationOptions(),
        )

    return _make


# ============================================================================
# Cascade fixtures
# ============================================================================


class SleepRecorder:
    """Awaitable no-op sleep recording requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Deterministic policy: 3 attempts, no jitter."""
    return RetryPolicy(max_attempts=3, initial_delay_s=1.0, backoff_multiplier=2.0, jitter=0.0)


@pytest.fixture
def make_orchestrator(sleep: SleepRecorder, retry_policy: RetryPolicy):
    """Factory building an orchestrator over the given providers."""

    def _make(*providers: FakeProvider, policy: RetryPolicy | None = None) -> CascadeOrchestrator:
        return CascadeOrchestrator(
            ProviderRegistry(providers),
            ContentGate(),
            FallbackArtifactGenerator(),
            policy or retry_policy,
            sleep=sleep,
        )

    return _make


# ============================================================================
# Storage fixtures
# ============================================================================


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def writer(records: InMemoryRecordStore, blobs: InMemoryBlobStore) -> SchemaAdaptiveWriter:
    return SchemaAdaptiveWriter(records, blobs)


@pytest.fixture
def make_pipeline(make_orchestrator, writer: SchemaAdaptiveWriter):
    """Factory building a pipeline over the given providers and the in-memory writer."""

    def _make(
        *providers: FakeProvider,
        policy: RetryPolicy | None = None,
        pipeline_writer: SchemaAdaptiveWriter | None = None,
        **kwargs: object,
    ) -> GenerationPipeline:
        return GenerationPipeline(
            make_orchestrator(*providers, policy=policy),
            pipeline_writer or writer,
            **kwargs,  # type: ignore[arg-type]
        )

    return _make
