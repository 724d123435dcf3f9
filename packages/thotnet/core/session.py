"""Thotnet session coordinator.

Builds the generation pipeline and its collaborators from one explicit
AppConfig. Services are created lazily on first access.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from uuid import uuid4

from thotnet.core.config.models import AppConfig
from thotnet.core.generation.fallback import FallbackArtifactGenerator
from thotnet.core.generation.gate import ContentGate, ImageGate, TextGate
from thotnet.core.generation.models import ContentKind, GenerationResult
from thotnet.core.generation.orchestrator import CascadeOrchestrator, RetryPolicy
from thotnet.core.generation.pipeline import GenerationPipeline
from thotnet.core.providers.registry import ProviderRegistry, build_provider_registry
from thotnet.core.storage.backends.fs import FSBlobStore
from thotnet.core.storage.backends.memory import InMemoryBlobStore, InMemoryRecordStore
from thotnet.core.storage.backends.postgrest import PostgrestRecordStore
from thotnet.core.storage.backends.sqlite import SQLiteRecordStore
from thotnet.core.storage.protocols import BlobStore, RecordStore
from thotnet.core.storage.writer import SchemaAdaptiveWriter

logger = logging.getLogger(__name__)


def build_gate(config: AppConfig) -> ContentGate:
    """Create the content gate from gate settings."""
    gate = config.gate
    return ContentGate(
        text=TextGate(
            min_length=gate.min_text_length,
            placeholder_max_length=gate.placeholder_max_length,
            placeholder_patterns=gate.placeholder_patterns,
            audit=gate.structural_audit,
        ),
        image=ImageGate(allowed_mime_types=gate.allowed_mime_types, max_bytes=gate.max_image_bytes),
    )


def build_stores(config: AppConfig) -> tuple[RecordStore, BlobStore]:
    """Create the record and blob stores named by storage settings.

    Raises:
        ValueError: If the PostgREST backend is selected without URL or key
    """
    storage = config.storage
    if storage.backend == "memory":
        return InMemoryRecordStore(), InMemoryBlobStore()

    blobs = FSBlobStore(storage.blob_root)
    if storage.backend == "sqlite":
        return SQLiteRecordStore(storage.database_path), blobs

    if not storage.postgrest_url or not storage.postgrest_key:
        raise ValueError(
            f"PostgREST backend requires postgrest_url and {storage.postgrest_key_env}"
        )
    return PostgrestRecordStore(storage.postgrest_url, storage.postgrest_key), blobs


def build_pipeline(
    config: AppConfig, registry: ProviderRegistry, writer: SchemaAdaptiveWriter
) -> GenerationPipeline:
    """Wire the cascade and pipeline from cascade, gate and fallback settings."""
    cascade = config.cascade
    orchestrator = CascadeOrchestrator(
        registry,
        build_gate(config),
        FallbackArtifactGenerator(),
        RetryPolicy.from_config(cascade),
    )
    return GenerationPipeline(
        orchestrator,
        writer,
        default_orders={
            ContentKind.TEXT: list(cascade.text_order),
            ContentKind.IMAGE: list(cascade.image_order),
        },
        variant_orders=dict(cascade.variant_orders),
        regenerate_fallbacks=config.regenerate_fallbacks,
    )


class ThotnetSession:
    """Owns configuration and lazily built generation services.

    Args:
        app_config: AppConfig instance, path, or None (default path)
        registry: Provider registry override (tests, custom adapters)
        records: Record store override
        blobs: Blob store override
        session_id: Diagnostic session id attached to requests
    """

    def __init__(
        self,
        *,
        app_config: AppConfig | Path | str | None = None,
        registry: ProviderRegistry | None = None,
        records: RecordStore | None = None,
        blobs: BlobStore | None = None,
        session_id: str | None = None,
    ) -> None:
        self.app_config = self._resolve_config(app_config)
        self.session_id = session_id or str(uuid4())
        self._registry = registry
        self._records = records
        self._blobs = blobs
        self._writer: SchemaAdaptiveWriter | None = None
        self._pipeline: GenerationPipeline | None = None
        self._schema_ready = False

    @staticmethod
    def _resolve_config(value: Any) -> AppConfig:
        if value is None:
            return AppConfig.load_or_default()
        if isinstance(value, (Path, str)):
            return AppConfig.load_or_default(Path(value))
        if isinstance(value, AppConfig):
            return value
        raise TypeError(f"Expected AppConfig, Path, str, or None; got {type(value).__name__}")

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            self._registry = build_provider_registry(self.app_config)
        return self._registry

    @property
    def records(self) -> RecordStore:
        if self._records is None:
            self._records, blobs = build_stores(self.app_config)
            if self._blobs is None:
                self._blobs = blobs
        return self._records

    @property
    def blobs(self) -> BlobStore:
        if self._blobs is None:
            _, self._blobs = build_stores(self.app_config)
        return self._blobs

    @property
    def writer(self) -> SchemaAdaptiveWriter:
        if self._writer is None:
            storage = self.app_config.storage
            self._writer = SchemaAdaptiveWriter(
                self.records,
                self.blobs,
                table=storage.table,
                conflict_policy=storage.conflict_policy,
                max_field_drops=storage.max_field_drops,
            )
        return self._writer

    @property
    def pipeline(self) -> GenerationPipeline:
        """Generation pipeline wired from the app config."""
        if self._pipeline is None:
            self._pipeline = build_pipeline(self.app_config, self.registry, self.writer)
        return self._pipeline

    async def ensure_schema(self) -> None:
        """Create the SQLite artifact table on first use; other backends own their schema."""
        if self._schema_ready:
            return
        records = self.records
        if isinstance(records, SQLiteRecordStore):
            await records.create_table(self.app_config.storage.table)
        self._schema_ready = True

    async def generate(self, *args: Any, **kwargs: Any) -> GenerationResult:
        """Shortcut for ``pipeline.generate`` with schema setup and session id."""
        await self.ensure_schema()
        kwargs.setdefault("session_id", self.session_id)
        return await self.pipeline.generate(*args, **kwargs)
