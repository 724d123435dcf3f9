"""Caller-facing generation pipeline.

REQUESTED → KEY_COMPUTED → CACHE_HIT → DONE
                         → CACHE_MISS → CASCADING → ACCEPTED | EXHAUSTED → FALLBACK
                                      → PERSISTING → DONE | PERSISTENCE_FAILED
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from thotnet.core.generation.errors import PersistenceFailure, RequestValidationError, ThotnetError
from thotnet.core.generation.idempotency import compute_idempotency_key
from thotnet.core.generation.models import (
    ContentKind,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    PipelineState,
    TargetIdentity,
)
from thotnet.core.generation.orchestrator import CascadeOrchestrator
from thotnet.core.storage.errors import PersistenceError
from thotnet.core.storage.writer import SchemaAdaptiveWriter
from thotnet.core.utils.logging import get_logger

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Computes keys, skips redundant work, runs the cascade and persists.

    Args:
        orchestrator: Cascade orchestrator.
        writer: Schema-adaptive persistence writer.
        default_orders: Provider order per content kind used when the
            caller passes none.
        variant_orders: Per-variant image orders that take precedence over
            the image default.
        regenerate_fallbacks: Treat stored fallback artifacts as misses.
    """

    def __init__(
        self,
        orchestrator: CascadeOrchestrator,
        writer: SchemaAdaptiveWriter,
        *,
        default_orders: dict[ContentKind, list[str]] | None = None,
        variant_orders: dict[str, list[str]] | None = None,
        regenerate_fallbacks: bool = False,
    ) -> None:
        self._orchestrator = orchestrator
        self._writer = writer
        self._default_orders = default_orders or {}
        self._variant_orders = variant_orders or {}
        self._regenerate_fallbacks = regenerate_fallbacks

    def _resolve_order(
        self, kind: ContentKind, variant: str, provider_order: Sequence[str] | None
    ) -> list[str]:
        if provider_order:
            return list(provider_order)
        if kind == ContentKind.IMAGE and variant in self._variant_orders:
            return list(self._variant_orders[variant])
        return list(self._default_orders.get(kind, []))

    def build_request(
        self,
        target: TargetIdentity,
        payload: str,
        provider_order: Sequence[str] | None = None,
        options: GenerationOptions | None = None,
        *,
        kind: ContentKind = ContentKind.TEXT,
        session_id: str | None = None,
    ) -> GenerationRequest:
        """Validate inputs and build a request.

        Raises:
            RequestValidationError: If identity fields, payload or provider
                order are missing.
        """
        for name in ("subject_id", "locale", "variant"):
            if not getattr(target, name):
                raise RequestValidationError(f"Target identity field '{name}' is required", field=name)
        if not payload or not payload.strip():
            raise RequestValidationError("Payload is empty", field="payload")

        order = self._resolve_order(kind, target.variant, provider_order)
        if not order:
            raise RequestValidationError("Provider order is empty", field="provider_order")
        # Unknown or mismatched providers fail here, before any call
        self._orchestrator.registry.resolve(order, kind)

        return GenerationRequest(
            kind=kind,
            target=target,
            provider_order=order,
            payload=payload,
            options=options or GenerationOptions(),
            session_id=session_id,
        )

    async def generate(
        self,
        target: TargetIdentity,
        payload: str,
        provider_order: Sequence[str] | None = None,
        options: GenerationOptions | None = None,
        *,
        kind: ContentKind = ContentKind.TEXT,
        force: bool = False,
        session_id: str | None = None,
    ) -> GenerationResult:
        """Generate (or reuse) the canonical artifact for a target.

        Args:
            target: What is being generated.
            payload: Prompt or source content.
            provider_order: Provider ids in priority order (None = configured default).
            options: Output-affecting options.
            kind: Text or image.
            force: Skip the cache check and regenerate.
            session_id: Diagnostic session identifier (not part of the key).

        Returns:
            GenerationResult in state DONE.

        Raises:
            RequestValidationError: If the request is malformed.
            PersistenceFailure: If the artifact was generated but not stored.
        """
        request = self.build_request(
            target, payload, provider_order, options, kind=kind, session_id=session_id
        )
        checksum = compute_idempotency_key(request)
        log = get_logger(__name__, conflict_key=target.conflict_key, checksum=checksum[:12])
        log.debug("State %s", PipelineState.KEY_COMPUTED.value)

        if not force:
            cached = await self._cache_lookup(target, checksum)
            if cached is not None:
                log.info("Cache hit; reusing %s artifact", cached.provider)
                return cached
        log.debug("State %s", PipelineState.CACHE_MISS.value)

        log.debug("State %s", PipelineState.CASCADING.value)
        result = await self._orchestrator.run(request.provider_order, request)
        log.debug("State %s", result.state.value)

        return await self._persist(result, log)

    async def _cache_lookup(self, target: TargetIdentity, checksum: str) -> GenerationResult | None:
        try:
            existing = await self._writer.fetch_canonical(target)
        except PersistenceError as e:
            # Unreadable store: generate anyway and let persistence report failures
            logger.warning("Cache lookup failed for %s: %s", target.conflict_key, e)
            return None

        if existing is None or existing.checksum != checksum:
            return None
        if existing.is_fallback and self._regenerate_fallbacks:
            logger.info("Stored artifact for %s is a fallback; regenerating", target.conflict_key)
            return None

        return GenerationResult(
            success=True,
            artifact=existing,
            provider=existing.source_tag,
            model=existing.model,
            attempts=[],
            checksum=checksum,
            used_fallback=existing.is_fallback,
            cache_hit=True,
            state=PipelineState.DONE,
        )

    async def _persist(self, result: GenerationResult, log: Any) -> GenerationResult:
        if result.artifact is None:
            raise ThotnetError(f"Cascade finished in state {result.state.value} without an artifact")
        log.debug("State %s", PipelineState.PERSISTING.value)
        try:
            stored = await self._writer.persist(result.artifact)
        except PersistenceError as e:
            log.error("Persistence failed (%s): %s", e.reason.value, e)
            failed = result.model_copy(update={"state": PipelineState.PERSISTENCE_FAILED})
            raise PersistenceFailure(failed, e) from e

        log.info(
            "Stored artifact from %s%s at %s",
            stored.source_tag,
            " (fallback)" if result.used_fallback else "",
            stored.storage_location,
        )
        return result.model_copy(update={"artifact": stored, "state": PipelineState.DONE})
