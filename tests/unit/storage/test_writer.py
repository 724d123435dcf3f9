"""Tests for the schema-adaptive persistence writer."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from thotnet.core.generation.models import (
    Artifact,
    ArtifactContent,
    ContentKind,
    TargetIdentity,
)
from thotnet.core.storage.backends.memory import InMemoryBlobStore, InMemoryRecordStore
from thotnet.core.storage.errors import (
    BlobStoreError,
    PersistenceError,
    PersistenceErrorReason,
    RecordRejected,
    RejectionKind,
    StorageError,
)
from thotnet.core.storage.models import ARTIFACT_COLUMNS, ConflictPolicy
from thotnet.core.storage.writer import (
    SchemaAdaptiveWriter,
    artifact_to_row,
    blob_path,
    classify_rejection,
    row_to_artifact,
)

TABLE = "generated_artifacts"
CHECKSUM = "a" * 64


@pytest.fixture
def artifact() -> Artifact:
    return Artifact(
        target=TargetIdentity(subject_id="intro-ml", locale="en", variant="textbook", slot_id="s1"),
        checksum=CHECKSUM,
        metadata={
            "attempt_count": 2,
            "providers_tried": ["groq", "gemini"],
            "prompt_summary": "Explain gradients.",
            "anchor": {"section": "intro"},
        },
        source_tag="gemini",
        model="gemini-2.5-flash",
        mime_type="text/markdown",
        content=ArtifactContent(kind=ContentKind.TEXT, text="# Article\n\nBody."),
    )


@pytest.fixture
def row(artifact: Artifact) -> dict:
    return artifact_to_row(artifact.model_copy(update={"storage_location": "memory://x"}))


def _without(columns: tuple[str, ...], *missing: str) -> list[str]:
    return [c for c in columns if c not in missing]


def _strip_id(stored: dict) -> dict:
    return {k: v for k, v in stored.items() if k != "id"}


class TestClassifyRejection:
    """Tests for the rejection signature table."""

    @pytest.mark.parametrize(
        ("message", "code", "kind", "field"),
        [
            (
                "Could not find the 'anchor' column of 'generated_artifacts' in the schema cache",
                "PGRST204",
                RejectionKind.UNKNOWN_FIELD,
                "anchor",
            ),
            (
                'column "prompt_summary" of relation "generated_artifacts" does not exist',
                "42703",
                RejectionKind.UNKNOWN_FIELD,
                "prompt_summary",
            ),
            (
                "table generated_artifacts has no column named model",
                None,
                RejectionKind.UNKNOWN_FIELD,
                "model",
            ),
            ("no such column: generated_artifacts.mime_type", None, RejectionKind.UNKNOWN_FIELD, "mime_type"),
            ("Unknown field 'slot_id' in row", None, RejectionKind.UNKNOWN_FIELD, "slot_id"),
            ("Empty or invalid json", "PGRST102", RejectionKind.MALFORMED_PAYLOAD, None),
            ('invalid input syntax for type json', "22P02", RejectionKind.MALFORMED_PAYLOAD, None),
            ("Invalid JSON in field 'metadata'", None, RejectionKind.MALFORMED_PAYLOAD, None),
            ("permission denied for table generated_artifacts", "42501", RejectionKind.OTHER, None),
        ],
    )
    def test_signatures(self, message: str, code: str | None, kind: RejectionKind, field) -> None:
        assert classify_rejection(RecordRejected(message, code=code)) == (kind, field)

    def test_code_alone_identifies_kind(self) -> None:
        kind, field = classify_rejection(RecordRejected("schema cache miss", code="PGRST204"))

        assert kind == RejectionKind.UNKNOWN_FIELD
        assert field is None

    def test_backend_classification_wins(self) -> None:
        error = RecordRejected("whatever", kind=RejectionKind.UNKNOWN_FIELD, field="anchor")
        assert classify_rejection(error) == (RejectionKind.UNKNOWN_FIELD, "anchor")


class TestRowMapping:
    """Tests for artifact/row conversion."""

    def test_rich_fields_get_their_own_columns(self, row: dict) -> None:
        assert row["prompt_summary"] == "Explain gradients."
        assert row["anchor"] == {"section": "intro"}
        assert row["metadata"] == {"attempt_count": 2, "providers_tried": ["groq", "gemini"]}
        assert row["conflict_key"] == "intro-ml|en|textbook|s1"
        assert set(row) == set(ARTIFACT_COLUMNS)

    def test_round_trip_preserves_metadata(self, artifact: Artifact, row: dict) -> None:
        restored = row_to_artifact(row)

        assert restored.metadata == artifact.metadata
        assert restored.target == artifact.target
        assert restored.created_at == artifact.created_at

    def test_tolerates_shed_columns(self, row: dict) -> None:
        for column in ("metadata", "prompt_summary", "anchor", "model", "created_at", "kind"):
            row.pop(column)

        restored = row_to_artifact(row)

        assert restored.metadata == {}
        assert restored.model is None
        assert restored.checksum == CHECKSUM

    def test_blob_path(self, artifact: Artifact) -> None:
        assert blob_path(artifact, "text/markdown") == "intro-ml/textbook-en-s1-aaaaaaaaaaaa.md"
        assert blob_path(artifact, "application/x-unknown").endswith(".bin")


class TestPersist:
    """Tests for persist and fetch_canonical."""

    async def test_persist_stores_bytes_and_row(self, artifact: Artifact) -> None:
        records, blobs = InMemoryRecordStore(), InMemoryBlobStore()
        writer = SchemaAdaptiveWriter(records, blobs)

        stored = await writer.persist(artifact)

        assert stored.storage_location == "memory://intro-ml/textbook-en-s1-aaaaaaaaaaaa.md"
        assert stored.content_hash is not None
        assert await writer.load_content(stored) == b"# Article\n\nBody."
        canonical = await writer.fetch_canonical(artifact.target)
        assert canonical is not None
        assert canonical.checksum == CHECKSUM
        assert canonical.source_tag == "gemini"

    async def test_separator_in_identity_keeps_targets_apart(self, artifact: Artifact) -> None:
        """Targets that differ only in where a '|' falls keep separate canonical rows."""
        records = InMemoryRecordStore()
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())
        a = TargetIdentity(subject_id="m|en", locale="x", variant="v")
        b = TargetIdentity(subject_id="m", locale="en|x", variant="v")

        await writer.persist(artifact.model_copy(update={"target": a, "checksum": "a" * 64}))
        await writer.persist(artifact.model_copy(update={"target": b, "checksum": "b" * 64}))

        assert records.count(TABLE) == 2
        fetched_a = await writer.fetch_canonical(a)
        fetched_b = await writer.fetch_canonical(b)
        assert fetched_a is not None and fetched_a.target == a
        assert fetched_b is not None and fetched_b.target == b

    async def test_persist_requires_content(self, artifact: Artifact) -> None:
        writer = SchemaAdaptiveWriter(InMemoryRecordStore(), InMemoryBlobStore())

        with pytest.raises(ValueError):
            await writer.persist(artifact.model_copy(update={"content": None}))

    async def test_blob_failure(self, artifact: Artifact) -> None:
        blobs = InMemoryBlobStore()
        blobs.put = AsyncMock(side_effect=BlobStoreError("bucket unavailable"))  # type: ignore[method-assign]
        records = InMemoryRecordStore()
        writer = SchemaAdaptiveWriter(records, blobs)

        with pytest.raises(PersistenceError) as exc_info:
            await writer.persist(artifact)

        assert exc_info.value.reason == PersistenceErrorReason.BLOB_UPLOAD_FAILED
        assert exc_info.value.retryable
        assert records.count(TABLE) == 0

    async def test_fetch_canonical_missing(self, artifact: Artifact) -> None:
        writer = SchemaAdaptiveWriter(InMemoryRecordStore(), InMemoryBlobStore())
        assert await writer.fetch_canonical(artifact.target) is None

    async def test_fetch_canonical_backend_error(self, artifact: Artifact) -> None:
        records = InMemoryRecordStore()
        records.fetch_latest = AsyncMock(side_effect=StorageError("down"))  # type: ignore[method-assign]
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        with pytest.raises(PersistenceError) as exc_info:
            await writer.fetch_canonical(artifact.target)

        assert exc_info.value.reason == PersistenceErrorReason.BACKEND_ERROR


class TestSchemaResilience:
    """Tests for adaptive field shedding."""

    async def test_unknown_fields_are_dropped(self, row: dict) -> None:
        records = InMemoryRecordStore(_without(ARTIFACT_COLUMNS, "prompt_summary", "anchor"))
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        stored = await writer.write(row, row["conflict_key"])

        expected = {k: v for k, v in row.items() if k not in ("prompt_summary", "anchor")}
        assert _strip_id(stored) == expected
        assert len(records.rejections) == 2

    async def test_field_drop_limit(self, row: dict) -> None:
        records = InMemoryRecordStore(_without(ARTIFACT_COLUMNS, "model", "mime_type"))
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore(), max_field_drops=1)

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write(row, row["conflict_key"])

        error = exc_info.value
        assert error.schema_mismatch_exhausted
        assert error.dropped_fields == ["model"]
        assert not error.retryable

    async def test_essential_fields_are_never_dropped(self, row: dict) -> None:
        records = InMemoryRecordStore(_without(ARTIFACT_COLUMNS, "storage_location"))
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write(row, row["conflict_key"])

        assert exc_info.value.reason == PersistenceErrorReason.SCHEMA_MISMATCH_EXHAUSTED
        assert exc_info.value.dropped_fields == []
        assert records.count(TABLE) == 0

    async def test_unnamed_unknown_field_gives_up(self, row: dict) -> None:
        records = InMemoryRecordStore()
        records.upsert = AsyncMock(  # type: ignore[method-assign]
            side_effect=RecordRejected("schema cache miss", code="PGRST204")
        )
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write(row, row["conflict_key"])

        assert exc_info.value.schema_mismatch_exhausted
        assert records.upsert.await_count == 1

    async def test_malformed_payload_strips_rich_fields_once(self, row: dict) -> None:
        records = InMemoryRecordStore(unparseable_fields=("metadata",))
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        stored = await writer.write(row, row["conflict_key"])

        assert stored["metadata"] == {}
        assert stored["prompt_summary"] is None
        assert stored["anchor"] is None
        untouched = {k: v for k, v in row.items() if k not in ("metadata", "prompt_summary", "anchor")}
        assert {k: stored[k] for k in untouched} == untouched

    async def test_malformed_after_strip_gives_up(self, row: dict) -> None:
        records = InMemoryRecordStore(unparseable_fields=("model",))
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write(row, row["conflict_key"])

        assert exc_info.value.reason == PersistenceErrorReason.MALFORMED_PAYLOAD
        assert len(records.rejections) == 2

    async def test_drift_and_malformed_combined(self, row: dict) -> None:
        records = InMemoryRecordStore(
            _without(ARTIFACT_COLUMNS, "anchor"), unparseable_fields=("metadata",)
        )
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        stored = await writer.write(row, row["conflict_key"])

        assert "anchor" not in stored
        assert stored["metadata"] == {}
        assert stored["checksum"] == CHECKSUM

    async def test_other_rejection_gives_up(self, row: dict) -> None:
        records = InMemoryRecordStore()
        records.upsert = AsyncMock(  # type: ignore[method-assign]
            side_effect=RecordRejected("permission denied for table", code="42501")
        )
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write(row, row["conflict_key"])

        assert exc_info.value.reason == PersistenceErrorReason.BACKEND_ERROR
        assert records.upsert.await_count == 1

    async def test_storage_error_is_backend_error(self, row: dict) -> None:
        records = InMemoryRecordStore()
        records.upsert = AsyncMock(side_effect=StorageError("connection reset"))  # type: ignore[method-assign]
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write(row, row["conflict_key"])

        assert exc_info.value.reason == PersistenceErrorReason.BACKEND_ERROR
        assert exc_info.value.retryable


class TestIdempotentWrite:
    """Tests for the idempotent-write primitive and conflict policies."""

    async def test_repeated_writes_keep_one_row(self, row: dict) -> None:
        records = InMemoryRecordStore()
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        await writer.write(row, row["conflict_key"])
        await writer.write({**row, "model": "other"}, row["conflict_key"])

        assert records.count(TABLE, row["conflict_key"]) == 1
        latest = await records.fetch_latest(TABLE, row["conflict_key"])
        assert latest is not None
        assert latest["model"] == "other"

    async def test_without_unique_constraint_updates_latest(self, row: dict) -> None:
        records = InMemoryRecordStore(unique=False)
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore())

        await writer.write(row, row["conflict_key"])
        await writer.write({**row, "model": "other"}, row["conflict_key"])

        assert records.count(TABLE, row["conflict_key"]) == 1

    async def test_reject_on_duplicate(self, row: dict) -> None:
        records = InMemoryRecordStore()
        writer = SchemaAdaptiveWriter(
            records, InMemoryBlobStore(), conflict_policy=ConflictPolicy.REJECT_ON_DUPLICATE
        )
        await writer.write(row, row["conflict_key"])

        # Same checksum is an idempotent rewrite
        await writer.write(row, row["conflict_key"])

        with pytest.raises(PersistenceError) as exc_info:
            await writer.write({**row, "checksum": "b" * 64}, row["conflict_key"])

        assert exc_info.value.reason == PersistenceErrorReason.DUPLICATE
        assert records.count(TABLE) == 1

    async def test_merge_keeps_existing_metadata(self, row: dict) -> None:
        records = InMemoryRecordStore()
        writer = SchemaAdaptiveWriter(records, InMemoryBlobStore(), conflict_policy=ConflictPolicy.MERGE)
        await writer.write({**row, "metadata": {"a": 1, "b": 1}}, row["conflict_key"])

        stored = await writer.write({**row, "metadata": {"b": 2}}, row["conflict_key"])

        assert stored["metadata"] == {"a": 1, "b": 2}
