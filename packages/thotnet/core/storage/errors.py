"""Storage exceptions and rejection taxonomy."""

from __future__ import annotations

from enum import Enum
from typing import Any


class RejectionKind(str, Enum):
    """Classified cause of a record rejection."""

    UNKNOWN_FIELD = "unknown_field"
    MALFORMED_PAYLOAD = "malformed_payload"
    OTHER = "other"


class PersistenceErrorReason(str, Enum):
    """Why the writer gave up."""

    SCHEMA_MISMATCH_EXHAUSTED = "schema_mismatch_exhausted"
    MALFORMED_PAYLOAD = "malformed_payload"
    BLOB_UPLOAD_FAILED = "blob_upload_failed"
    DUPLICATE = "duplicate"
    BACKEND_ERROR = "backend_error"


class StorageError(Exception):
    """Base exception for storage backends."""


class RecordRejected(StorageError):
    """A record store refused a row.

    Backends set ``kind`` and ``field`` when they know them; otherwise the
    writer classifies the rejection from ``code`` and the message.

    Attributes:
        message: Backend error message.
        code: Backend error code (e.g. 'PGRST204').
        kind: Rejection kind if the backend classified it.
        field: Offending field name if known.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        kind: RejectionKind | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.kind = kind
        self.field = field

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} (code={self.code})"
        return self.message


class BlobStoreError(StorageError):
    """Blob upload or download failed."""


class PersistenceError(StorageError):
    """Adaptive write gave up.

    Attributes:
        reason: Structured cause.
        row: Last row attempted.
        dropped_fields: Fields shed before giving up.
        cause: Last backend error.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: PersistenceErrorReason,
        row: dict[str, Any] | None = None,
        dropped_fields: list[str] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.row = row or {}
        self.dropped_fields = dropped_fields or []
        self.cause = cause

    @property
    def schema_mismatch_exhausted(self) -> bool:
        return self.reason == PersistenceErrorReason.SCHEMA_MISMATCH_EXHAUSTED

    @property
    def retryable(self) -> bool:
        """Transient causes worth retrying after a delay."""
        return self.reason in (
            PersistenceErrorReason.BLOB_UPLOAD_FAILED,
            PersistenceErrorReason.BACKEND_ERROR,
        )
