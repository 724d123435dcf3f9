"""Protocols for storage collaborators.

Blob stores hold artifact bytes; record stores hold one metadata row per
artifact and report rejections as ``RecordRejected``.
"""

from __future__ import annotations

from typing import Any, Protocol


class BlobStore(Protocol):
    """Object storage for artifact bytes (async)."""

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes at a relative path, overwriting existing content.

        Args:
            path: Relative object path.
            data: Raw bytes.
            content_type: Mime type of the bytes.

        Returns:
            Storage location of the stored object.

        Raises:
            BlobStoreError: If the upload fails
        """
        ...

    async def get(self, location: str) -> bytes:
        """Read bytes back from a storage location.

        Raises:
            BlobStoreError: If the object cannot be read
        """
        ...

    async def exists(self, location: str) -> bool:
        """Check whether a storage location holds an object."""
        ...


class RecordStore(Protocol):
    """Structured record store keyed by a ``conflict_key`` column (async).

    All write methods return the stored row as the backend sees it. Rows
    rejected by the backend raise ``RecordRejected``; transport failures
    raise ``StorageError``.
    """

    async def supports_unique_constraint(self, table: str) -> bool:
        """Whether ``conflict_key`` is enforced unique, enabling true upserts."""
        ...

    async def upsert(self, table: str, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        """Insert or replace the row whose ``conflict_key`` matches."""
        ...

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a new row."""
        ...

    async def update_latest(
        self, table: str, row: dict[str, Any], conflict_key: str
    ) -> dict[str, Any] | None:
        """Update the most recent row for a key; None if there is none."""
        ...

    async def fetch_latest(self, table: str, conflict_key: str) -> dict[str, Any] | None:
        """Most recent row for a key, or None."""
        ...
