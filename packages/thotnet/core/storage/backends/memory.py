"""In-memory storage backends.

The record store can be configured with a restricted column set and fields
whose values it refuses to parse, reproducing schema drift without a database.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable
from typing import Any

from thotnet.core.storage.errors import BlobStoreError, RecordRejected

logger = logging.getLogger(__name__)


class InMemoryBlobStore:
    """Dict-backed blob store."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        location = f"memory://{path}"
        self.objects[location] = (bytes(data), content_type)
        return location

    async def get(self, location: str) -> bytes:
        try:
            return self.objects[location][0]
        except KeyError as e:
            raise BlobStoreError(f"No object at {location}") from e

    async def exists(self, location: str) -> bool:
        return location in self.objects


class InMemoryRecordStore:
    """List-backed record store.

    Args:
        columns: Accepted columns; None accepts any column. Rows naming other
            columns are rejected one unknown field at a time.
        unique: Whether ``conflict_key`` is enforced unique.
        unparseable_fields: Fields whose non-empty values are rejected as a
            malformed payload.
    """

    def __init__(
        self,
        columns: Iterable[str] | None = None,
        *,
        unique: bool = True,
        unparseable_fields: Iterable[str] = (),
    ) -> None:
        self._columns = frozenset(columns) if columns is not None else None
        self._unique = unique
        self._unparseable = frozenset(unparseable_fields)
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.rejections: list[RecordRejected] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    def _validate(self, row: dict[str, Any]) -> None:
        if self._columns is not None:
            for column in row:
                if column not in self._columns:
                    self._reject(f"Unknown field '{column}' in row")
        for field in self._unparseable:
            if row.get(field):
                self._reject(f"Invalid JSON in field '{field}'")

    def _reject(self, message: str) -> None:
        error = RecordRejected(message)
        self.rejections.append(error)
        raise error

    def _rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _latest_index(self, table: str, conflict_key: str) -> int | None:
        rows = self._rows(table)
        for index in range(len(rows) - 1, -1, -1):
            if rows[index].get("conflict_key") == conflict_key:
                return index
        return None

    def _new_row(self, row: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(row)
        stored["id"] = self._next_id
        self._next_id += 1
        return stored

    async def supports_unique_constraint(self, table: str) -> bool:
        return self._unique

    async def upsert(self, table: str, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        async with self._lock:
            self._validate(row)
            index = self._latest_index(table, conflict_key)
            if index is None:
                stored = self._new_row(row)
                self._rows(table).append(stored)
            else:
                existing_id = self._rows(table)[index]["id"]
                stored = {**copy.deepcopy(row), "id": existing_id}
                self._rows(table)[index] = stored
            return copy.deepcopy(stored)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            self._validate(row)
            if self._unique and self._latest_index(table, row.get("conflict_key", "")) is not None:
                self._reject(f"Duplicate conflict_key '{row.get('conflict_key')}'")
            stored = self._new_row(row)
            self._rows(table).append(stored)
            return copy.deepcopy(stored)

    async def update_latest(
        self, table: str, row: dict[str, Any], conflict_key: str
    ) -> dict[str, Any] | None:
        async with self._lock:
            self._validate(row)
            index = self._latest_index(table, conflict_key)
            if index is None:
                return None
            stored = {**self._rows(table)[index], **copy.deepcopy(row)}
            self._rows(table)[index] = stored
            return copy.deepcopy(stored)

    async def fetch_latest(self, table: str, conflict_key: str) -> dict[str, Any] | None:
        index = self._latest_index(table, conflict_key)
        if index is None:
            return None
        return copy.deepcopy(self._rows(table)[index])

    def count(self, table: str, conflict_key: str | None = None) -> int:
        rows = self._rows(table)
        if conflict_key is None:
            return len(rows)
        return sum(1 for row in rows if row.get("conflict_key") == conflict_key)
