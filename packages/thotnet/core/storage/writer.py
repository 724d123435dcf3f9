"""Schema-adaptive persistence writer.

Writes artifacts through one idempotent-write primitive with an explicit
conflict policy. Rejections are classified against a single signature table
and mapped to a field-shedding strategy:

- unknown field: drop the named field and retry (bounded)
- malformed payload: strip rich fields once and retry
- anything else: give up

Essential fields (target identity, checksum, location, source tag) are never
shed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from thotnet.core.generation.idempotency import compute_content_hash
from thotnet.core.generation.models import (
    Artifact,
    ArtifactContent,
    ContentKind,
    TargetIdentity,
)
from thotnet.core.storage.backends.fs import sanitize_path_component
from thotnet.core.storage.errors import (
    BlobStoreError,
    PersistenceError,
    PersistenceErrorReason,
    RecordRejected,
    RejectionKind,
    StorageError,
)
from thotnet.core.storage.models import ESSENTIAL_COLUMNS, RICH_COLUMNS, ConflictPolicy
from thotnet.core.storage.protocols import BlobStore, RecordStore

logger = logging.getLogger(__name__)

# Prompt excerpt stored alongside the artifact
_PROMPT_SUMMARY_CHARS = 1000

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "text/markdown": "md",
    "text/plain": "txt",
    "application/json": "json",
}


class ShedStrategy(str, Enum):
    """What the writer does after a classified rejection."""

    DROP_FIELD = "drop_field"
    STRIP_RICH_FIELDS = "strip_rich_fields"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class RejectionSignature:
    """How to recognise one class of backend rejection.

    Attributes:
        kind: Classified rejection kind.
        codes: Backend error codes that identify the kind outright.
        patterns: Message patterns; a named group ``field`` extracts the
            offending field.
    """

    kind: RejectionKind
    codes: frozenset[str] = frozenset()
    patterns: tuple[re.Pattern[str], ...] = field(default_factory=tuple)


def _patterns(*raw: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in raw)


REJECTION_SIGNATURES: tuple[RejectionSignature, ...] = (
    RejectionSignature(
        kind=RejectionKind.UNKNOWN_FIELD,
        codes=frozenset({"PGRST204", "42703"}),
        patterns=_patterns(
            r"could not find the '(?P<field>[^']+)' column",
            r"column \"?(?P<field>[\w.]+)\"? (?:of relation \S+ )?does not exist",
            r"has no column named (?P<field>\w+)",
            r"no such column: (?P<field>[\w.]+)",
            r"unknown (?:field|column) '?(?P<field>\w+)'?",
        ),
    ),
    RejectionSignature(
        kind=RejectionKind.MALFORMED_PAYLOAD,
        codes=frozenset({"PGRST102", "22P02", "22023"}),
        patterns=_patterns(
            r"invalid json",
            r"malformed",
            r"invalid input syntax",
            r"could not parse",
            r"unsupported (?:type|encoding)",
        ),
    ),
)

SHEDDING_STRATEGIES: dict[RejectionKind, ShedStrategy] = {
    RejectionKind.UNKNOWN_FIELD: ShedStrategy.DROP_FIELD,
    RejectionKind.MALFORMED_PAYLOAD: ShedStrategy.STRIP_RICH_FIELDS,
    RejectionKind.OTHER: ShedStrategy.GIVE_UP,
}


def _extract_field(signature: RejectionSignature, message: str) -> str | None:
    for pattern in signature.patterns:
        match = pattern.search(message)
        if match and "field" in match.groupdict() and match.group("field"):
            # Qualified names (table.column) carry the column last
            return match.group("field").split(".")[-1]
    return None


def classify_rejection(error: RecordRejected) -> tuple[RejectionKind, str | None]:
    """Classify a rejection and name the offending field when possible.

    Args:
        error: Backend rejection.

    Returns:
        Tuple of (kind, field). Field is None when it cannot be determined.
    """
    message = error.message
    if error.kind is not None:
        signature = next((s for s in REJECTION_SIGNATURES if s.kind == error.kind), None)
        found = error.field or (_extract_field(signature, message) if signature else None)
        return error.kind, found

    for signature in REJECTION_SIGNATURES:
        if (error.code and error.code in signature.codes) or any(
            p.search(message) for p in signature.patterns
        ):
            return signature.kind, error.field or _extract_field(signature, message)

    return RejectionKind.OTHER, error.field


def blob_path(artifact: Artifact, mime_type: str) -> str:
    """Object path for an artifact's bytes.

    The checksum prefix makes re-uploads of an identical artifact overwrite
    the same object.
    """
    target = artifact.target
    parts = [target.variant, target.locale]
    if target.slot_id:
        parts.append(target.slot_id)
    parts.append(artifact.checksum[:12])
    name = "-".join(sanitize_path_component(p) for p in parts)
    ext = MIME_EXTENSIONS.get(mime_type, "bin")
    return f"{sanitize_path_component(target.subject_id)}/{name}.{ext}"


def artifact_to_row(artifact: Artifact) -> dict[str, Any]:
    """Flatten an artifact into a record row."""
    metadata = dict(artifact.metadata)
    prompt_summary = metadata.pop("prompt_summary", None)
    anchor = metadata.pop("anchor", None)
    return {
        "conflict_key": artifact.target.conflict_key,
        **artifact.target.as_columns(),
        "checksum": artifact.checksum,
        "kind": artifact.kind.value,
        "source_tag": artifact.source_tag,
        "model": artifact.model,
        "storage_location": artifact.storage_location,
        "mime_type": artifact.mime_type,
        "content_hash": artifact.content_hash,
        "metadata": metadata,
        "prompt_summary": prompt_summary[:_PROMPT_SUMMARY_CHARS] if prompt_summary else None,
        "anchor": anchor,
        "created_at": artifact.created_at.isoformat(),
    }


def row_to_artifact(row: dict[str, Any], content: ArtifactContent | None = None) -> Artifact:
    """Rebuild an artifact from a stored row, tolerating shed columns."""
    metadata = dict(row.get("metadata") or {})
    if row.get("prompt_summary"):
        metadata["prompt_summary"] = row["prompt_summary"]
    if row.get("anchor"):
        metadata["anchor"] = row["anchor"]

    created_at = row.get("created_at")
    extra: dict[str, Any] = {}
    if isinstance(created_at, datetime):
        extra["created_at"] = created_at
    elif isinstance(created_at, str) and created_at:
        extra["created_at"] = datetime.fromisoformat(created_at.replace("Z", "+00:00"))

    return Artifact(
        target=TargetIdentity(
            subject_id=row["subject_id"],
            locale=row["locale"],
            variant=row["variant"],
            slot_id=row.get("slot_id"),
        ),
        checksum=row["checksum"],
        storage_location=row.get("storage_location"),
        metadata=metadata,
        source_tag=row["source_tag"],
        kind=ContentKind(row.get("kind") or (content.kind if content else ContentKind.TEXT)),
        model=row.get("model"),
        mime_type=row.get("mime_type"),
        content_hash=row.get("content_hash"),
        content=content,
        **extra,
    )


class SchemaAdaptiveWriter:
    """Persists artifacts despite schema drift in the record store.

    Args:
        records: Record store.
        blobs: Blob store for artifact bytes.
        table: Table holding artifact rows.
        conflict_policy: Policy for an existing canonical row.
        max_field_drops: Maximum unknown fields shed before giving up.
    """

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        *,
        table: str = "generated_artifacts",
        conflict_policy: ConflictPolicy = ConflictPolicy.LAST_WRITE_WINS,
        max_field_drops: int = 5,
    ) -> None:
        self._records = records
        self._blobs = blobs
        self._table = table
        self._policy = conflict_policy
        self._max_field_drops = max_field_drops

    @property
    def table(self) -> str:
        return self._table

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    async def persist(self, artifact: Artifact) -> Artifact:
        """Upload an artifact's bytes and write its canonical row.

        Args:
            artifact: Artifact holding its content in memory.

        Returns:
            Stored artifact built from the row the backend accepted.

        Raises:
            ValueError: If the artifact carries no content.
            PersistenceError: If the bytes or the row could not be stored.
        """
        content = artifact.content
        if content is None:
            raise ValueError("Artifact has no in-memory content to persist")

        data = content.as_bytes()
        path = blob_path(artifact, content.mime_type)
        try:
            location = await self._blobs.put(path, data, content.mime_type)
        except BlobStoreError as e:
            raise PersistenceError(
                f"Blob upload failed for {path}: {e}",
                reason=PersistenceErrorReason.BLOB_UPLOAD_FAILED,
                cause=e,
            ) from e

        stored_artifact = artifact.model_copy(
            update={
                "storage_location": location,
                "content_hash": compute_content_hash(data),
                "mime_type": content.mime_type,
            }
        )
        row = await self.write(artifact_to_row(stored_artifact), artifact.target.conflict_key)
        return row_to_artifact(row, content)

    async def fetch_canonical(self, target: TargetIdentity) -> Artifact | None:
        """Latest stored artifact for a target, or None.

        Raises:
            PersistenceError: If the record store cannot be read.
        """
        try:
            row = await self._records.fetch_latest(self._table, target.conflict_key)
        except StorageError as e:
            raise PersistenceError(
                f"Could not read canonical artifact for {target.conflict_key}: {e}",
                reason=PersistenceErrorReason.BACKEND_ERROR,
                cause=e,
            ) from e
        return row_to_artifact(row) if row else None

    async def load_content(self, artifact: Artifact) -> bytes:
        """Read an artifact's bytes from the blob store."""
        if not artifact.storage_location:
            raise ValueError("Artifact has no storage location")
        return await self._blobs.get(artifact.storage_location)

    async def write(self, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        """Idempotent write of one row under the configured conflict policy.

        Args:
            row: Row to store.
            conflict_key: Key naming the canonical record.

        Returns:
            Stored row as returned by the backend.

        Raises:
            PersistenceError: If adaptive retries are exhausted or the
                rejection is not recoverable.
        """
        row = await self._apply_conflict_policy(dict(row), conflict_key)
        dropped: list[str] = []
        rich_stripped = False

        # Every drop plus one rich-field strip plus the final successful write
        max_iterations = self._max_field_drops + 2
        last_error: RecordRejected | None = None

        for iteration in range(1, max_iterations + 1):
            try:
                stored = await self._write_once(row, conflict_key)
            except RecordRejected as e:
                last_error = e
            except StorageError as e:
                raise PersistenceError(
                    f"Record store failed: {e}",
                    reason=PersistenceErrorReason.BACKEND_ERROR,
                    row=row,
                    dropped_fields=dropped,
                    cause=e,
                ) from e
            else:
                if dropped or rich_stripped:
                    logger.warning(
                        "Stored %s after %d iterations (dropped: %s, rich fields stripped: %s)",
                        conflict_key,
                        iteration,
                        ", ".join(dropped) or "none",
                        rich_stripped,
                    )
                return stored

            kind, field_name = classify_rejection(last_error)
            strategy = SHEDDING_STRATEGIES[kind]
            logger.info(
                "Write of %s rejected (%s, field=%s): %s", conflict_key, kind.value, field_name, last_error
            )

            if strategy == ShedStrategy.DROP_FIELD:
                if (
                    field_name is None
                    or field_name in ESSENTIAL_COLUMNS
                    or field_name not in row
                    or len(dropped) >= self._max_field_drops
                ):
                    raise self._error(
                        f"Cannot shed field {field_name!r}",
                        PersistenceErrorReason.SCHEMA_MISMATCH_EXHAUSTED,
                        row,
                        dropped,
                        last_error,
                    )
                row.pop(field_name)
                dropped.append(field_name)
            elif strategy == ShedStrategy.STRIP_RICH_FIELDS:
                if rich_stripped:
                    raise self._error(
                        "Payload still malformed after stripping rich fields",
                        PersistenceErrorReason.MALFORMED_PAYLOAD,
                        row,
                        dropped,
                        last_error,
                    )
                row = self._strip_rich_fields(row)
                rich_stripped = True
            else:
                raise self._error(
                    "Unrecoverable rejection",
                    PersistenceErrorReason.BACKEND_ERROR,
                    row,
                    dropped,
                    last_error,
                )

        raise self._error(
            f"Gave up after {max_iterations} attempts",
            PersistenceErrorReason.SCHEMA_MISMATCH_EXHAUSTED,
            row,
            dropped,
            last_error,
        )

    async def _write_once(self, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        if await self._records.supports_unique_constraint(self._table):
            return await self._records.upsert(self._table, row, conflict_key)
        # No uniqueness: best effort, concurrent writers may still duplicate
        updated = await self._records.update_latest(self._table, row, conflict_key)
        if updated is not None:
            return updated
        return await self._records.insert(self._table, row)

    async def _apply_conflict_policy(self, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        if self._policy == ConflictPolicy.LAST_WRITE_WINS:
            return row

        try:
            existing = await self._records.fetch_latest(self._table, conflict_key)
        except StorageError as e:
            raise self._error(
                f"Could not read existing row: {e}", PersistenceErrorReason.BACKEND_ERROR, row, [], e
            ) from e
        if existing is None:
            return row

        if self._policy == ConflictPolicy.REJECT_ON_DUPLICATE:
            if existing.get("checksum") != row.get("checksum"):
                raise self._error(
                    f"Canonical row for {conflict_key} already exists with checksum "
                    f"{existing.get('checksum')}",
                    PersistenceErrorReason.DUPLICATE,
                    row,
                    [],
                    None,
                )
            return row

        # MERGE
        merged_metadata = {**(existing.get("metadata") or {}), **(row.get("metadata") or {})}
        return {**row, "metadata": merged_metadata}

    @staticmethod
    def _strip_rich_fields(row: dict[str, Any]) -> dict[str, Any]:
        stripped = dict(row)
        for column in RICH_COLUMNS:
            if column in stripped:
                stripped[column] = {} if column == "metadata" else None
        return stripped

    @staticmethod
    def _error(
        message: str,
        reason: PersistenceErrorReason,
        row: dict[str, Any],
        dropped: list[str],
        cause: BaseException | None,
    ) -> PersistenceError:
        if cause is not None:
            message = f"{message}: {cause}"
        return PersistenceError(
            message, reason=reason, row=dict(row), dropped_fields=list(dropped), cause=cause
        )
