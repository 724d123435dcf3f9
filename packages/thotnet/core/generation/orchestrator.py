"""Cascade orchestrator.

Drives an ordered list of providers with bounded per-provider retries,
gates every output, short-circuits on the first accepted result and falls
back to a local artifact when everything fails. Provider calls are strictly
sequential.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from thotnet.core.generation.errors import ProviderExhausted, RequestValidationError
from thotnet.core.generation.fallback import FALLBACK_MODEL, FallbackArtifactGenerator
from thotnet.core.generation.gate import ContentGate, GateVerdict
from thotnet.core.generation.idempotency import compute_idempotency_key, normalize_text
from thotnet.core.generation.models import (
    FALLBACK_SOURCE,
    Artifact,
    ArtifactContent,
    AttemptOutcome,
    ContentKind,
    GenerationAttempt,
    GenerationRequest,
    GenerationResult,
    PipelineState,
    ProviderOutcome,
    utc_now,
)
from thotnet.core.providers.base import ProviderAdapter
from thotnet.core.providers.registry import ProviderRegistry

if TYPE_CHECKING:
    from thotnet.core.config.models import CascadeConfig

logger = logging.getLogger(__name__)

# Prompt excerpt kept with artifacts
_PROMPT_SUMMARY_CHARS = 1000


class RetryPolicy(BaseModel):
    """Per-provider retry bound and backoff.

    Attributes:
        max_attempts: Attempts per provider, including the first.
        initial_delay_s: Delay before the second attempt.
        backoff_multiplier: Delay growth per attempt.
        max_delay_s: Delay cap.
        jitter: Relative +/- jitter applied to each delay (0 disables).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_s: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_s: float = Field(default=10.0, ge=0.0)
    jitter: float = Field(default=0.25, ge=0.0, le=1.0)

    @classmethod
    def from_config(cls, config: CascadeConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts_per_provider,
            initial_delay_s=config.initial_delay_s,
            backoff_multiplier=config.backoff_multiplier,
            max_delay_s=config.max_delay_s,
            jitter=config.jitter,
        )

    def delay_for(self, attempt_number: int, rng: random.Random) -> float:
        """Delay after a failed attempt (1-based)."""
        delay = min(
            self.initial_delay_s * self.backoff_multiplier ** (attempt_number - 1),
            self.max_delay_s,
        )
        if self.jitter:
            delay *= 1 + rng.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)


class _AcceptedOutput(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    outcome: ProviderOutcome
    verdict: GateVerdict


class CascadeOrchestrator:
    """Runs the provider cascade for one request at a time.

    Never raises for provider-level failure; only contract violations (an
    empty or unresolvable provider list) raise ``RequestValidationError``.

    Args:
        registry: Provider registry used to resolve provider ids.
        gate: Content acceptance gate.
        fallback: Local fallback generator.
        retry_policy: Retry bound and backoff per provider.
        sleep: Awaitable sleep (injected in tests).
        rng: Random source for jitter.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        gate: ContentGate | None = None,
        fallback: FallbackArtifactGenerator | None = None,
        retry_policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._registry = registry
        self._gate = gate or ContentGate()
        self._fallback = fallback or FallbackArtifactGenerator()
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def run(
        self,
        providers: Sequence[ProviderAdapter | str],
        request: GenerationRequest,
    ) -> GenerationResult:
        """Run the cascade.

        Args:
            providers: Adapters or provider ids, in priority order.
            request: Generation request.

        Returns:
            GenerationResult in state ACCEPTED or FALLBACK. The artifact holds
            its content in memory and has no storage location yet.

        Raises:
            RequestValidationError: If the provider list is empty or invalid.
        """
        adapters = self._resolve(providers, request.kind)
        checksum = compute_idempotency_key(request)
        attempts: list[GenerationAttempt] = []

        try:
            provider, accepted = await self._cascade(adapters, request, attempts)
        except ProviderExhausted as e:
            logger.warning(
                "All %d providers exhausted for %s after %d attempts; using fallback",
                len(adapters),
                request.target.conflict_key,
                len(e.attempts),
            )
            return self._fallback_result(request, checksum, e.attempts)

        content = self._content_from(request.kind, accepted)
        model = accepted.outcome.model
        artifact = self._artifact(
            request, checksum, content, source_tag=provider.provider_id, model=model, attempts=attempts
        )
        if accepted.verdict.findings:
            artifact = artifact.model_copy(
                update={"metadata": {**artifact.metadata, "audit_findings": accepted.verdict.findings}}
            )

        logger.info(
            "Accepted output from %s (%s) after %d attempts",
            provider.provider_id,
            model or "default model",
            len(attempts),
        )
        return GenerationResult(
            success=True,
            artifact=artifact,
            provider=provider.provider_id,
            model=model,
            attempts=list(attempts),
            checksum=checksum,
            used_fallback=False,
            state=PipelineState.ACCEPTED,
        )

    def _resolve(
        self, providers: Sequence[ProviderAdapter | str], kind: ContentKind
    ) -> list[ProviderAdapter]:
        if not providers:
            raise RequestValidationError("Provider order is empty", field="provider_order")
        if all(isinstance(p, str) for p in providers):
            return self._registry.resolve(providers, kind)  # type: ignore[arg-type]
        adapters = [
            self._registry.resolve([p], kind)[0] if isinstance(p, str) else p for p in providers
        ]
        for adapter in adapters:
            if adapter.kind != kind:
                raise RequestValidationError(
                    f"Provider '{adapter.provider_id}' does not produce {kind.value}",
                    field="provider_order",
                )
        return adapters

    async def _cascade(
        self,
        adapters: list[ProviderAdapter],
        request: GenerationRequest,
        attempts: list[GenerationAttempt],
    ) -> tuple[ProviderAdapter, _AcceptedOutput]:
        """Try providers in order.

        Raises:
            ProviderExhausted: If no provider produced accepted output.
        """
        for adapter in adapters:
            accepted = await self._try_provider(adapter, request, attempts)
            if accepted is not None:
                return adapter, accepted
        raise ProviderExhausted(list(attempts))

    async def _try_provider(
        self,
        adapter: ProviderAdapter,
        request: GenerationRequest,
        attempts: list[GenerationAttempt],
    ) -> _AcceptedOutput | None:
        """Attempt one provider up to the retry bound."""
        provider_id = adapter.provider_id

        if not adapter.is_configured():
            logger.info("Skipping provider %s: credentials not configured", provider_id)
            attempts.append(
                GenerationAttempt(
                    provider_id=provider_id,
                    model=request.options.model,
                    attempt_number=1,
                    started_at=utc_now(),
                    outcome=AttemptOutcome.PROVIDER_ERROR,
                    error_detail="Provider not configured",
                )
            )
            return None

        max_attempts = self._retry.max_attempts
        for attempt_number in range(1, max_attempts + 1):
            started_at = utc_now()
            start = time.perf_counter()
            try:
                outcome = await adapter.generate(request.payload, request.options)
            except Exception as e:
                logger.exception("Provider %s raised unexpectedly", provider_id)
                outcome = ProviderOutcome(
                    success=False,
                    provider_id=provider_id,
                    model=request.options.model,
                    error=f"{type(e).__name__}: {e}",
                    retryable=True,
                )
            duration_ms = (time.perf_counter() - start) * 1000.0

            if outcome.success:
                verdict = self._gate.check(request.kind, outcome, request.target.locale)
                if verdict.accepted:
                    attempts.append(
                        GenerationAttempt(
                            provider_id=provider_id,
                            model=outcome.model,
                            attempt_number=attempt_number,
                            started_at=started_at,
                            duration_ms=duration_ms,
                            outcome=AttemptOutcome.SUCCESS,
                        )
                    )
                    return _AcceptedOutput(outcome=outcome, verdict=verdict)

                logger.info(
                    "Gate rejected %s attempt %d/%d: %s",
                    provider_id,
                    attempt_number,
                    max_attempts,
                    verdict.detail,
                )
                attempts.append(
                    GenerationAttempt(
                        provider_id=provider_id,
                        model=outcome.model,
                        attempt_number=attempt_number,
                        started_at=started_at,
                        duration_ms=duration_ms,
                        outcome=AttemptOutcome.REJECTED_BY_GATE,
                        error_detail=f"{verdict.reason}: {verdict.detail}",
                    )
                )
            else:
                logger.warning(
                    "Provider %s attempt %d/%d failed%s: %s",
                    provider_id,
                    attempt_number,
                    max_attempts,
                    "" if outcome.retryable else " (non-retryable)",
                    outcome.error,
                )
                attempts.append(
                    GenerationAttempt(
                        provider_id=provider_id,
                        model=outcome.model,
                        attempt_number=attempt_number,
                        started_at=started_at,
                        duration_ms=duration_ms,
                        outcome=AttemptOutcome.PROVIDER_ERROR,
                        error_detail=outcome.error,
                    )
                )
                if not outcome.retryable:
                    return None

            if attempt_number < max_attempts:
                await self._sleep(self._retry.delay_for(attempt_number, self._rng))

        return None

    @staticmethod
    def _content_from(kind: ContentKind, accepted: _AcceptedOutput) -> ArtifactContent:
        verdict = accepted.verdict
        if kind == ContentKind.IMAGE and verdict.image is not None:
            return ArtifactContent(
                kind=ContentKind.IMAGE, data=verdict.image.data, mime_type=verdict.image.mime_type
            )
        return ArtifactContent(
            kind=ContentKind.TEXT, text=verdict.sanitized_text or "", mime_type="text/markdown"
        )

    @staticmethod
    def _artifact(
        request: GenerationRequest,
        checksum: str,
        content: ArtifactContent,
        *,
        source_tag: str,
        model: str | None,
        attempts: list[GenerationAttempt],
    ) -> Artifact:
        metadata: dict[str, object] = {
            "attempt_count": len(attempts),
            "providers_tried": list(dict.fromkeys(a.provider_id for a in attempts)),
            "prompt_summary": normalize_text(request.payload)[:_PROMPT_SUMMARY_CHARS],
        }
        if request.options.anchor:
            metadata["anchor"] = request.options.anchor
        if request.options.category:
            metadata["category"] = request.options.category
        return Artifact(
            target=request.target,
            checksum=checksum,
            metadata=metadata,
            source_tag=source_tag,
            kind=request.kind,
            model=model,
            mime_type=content.mime_type,
            content=content,
        )

    def _fallback_result(
        self, request: GenerationRequest, checksum: str, attempts: list[GenerationAttempt]
    ) -> GenerationResult:
        content = self._fallback.generate(request)
        artifact = self._artifact(
            request,
            checksum,
            content,
            source_tag=FALLBACK_SOURCE,
            model=FALLBACK_MODEL,
            attempts=attempts,
        )
        return GenerationResult(
            success=True,
            artifact=artifact,
            provider=FALLBACK_SOURCE,
            model=FALLBACK_MODEL,
            attempts=list(attempts),
            checksum=checksum,
            used_fallback=True,
            state=PipelineState.FALLBACK,
        )
