"""SQLite record store.

Reports real schema drift: writing a column the table lacks fails with
"table ... has no column named ...", which the writer classifies as an
unknown field. Upserts use ``ON CONFLICT`` only when a unique index covers
``conflict_key``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from thotnet.core.storage.errors import RecordRejected, RejectionKind, StorageError
from thotnet.core.storage.models import ARTIFACT_COLUMNS

logger = logging.getLogger(__name__)

# Columns holding JSON documents
JSON_COLUMNS = frozenset({"metadata", "anchor"})

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _quote(identifier: str) -> str:
    if not _IDENTIFIER.match(identifier):
        raise RecordRejected(
            f"Invalid identifier '{identifier}'", kind=RejectionKind.UNKNOWN_FIELD, field=identifier
        )
    return f'"{identifier}"'


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in JSON_COLUMNS or isinstance(value, (dict, list)):
        try:
            return json.dumps(value, sort_keys=True, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise RecordRejected(
                f"Invalid JSON in field '{column}': {e}",
                kind=RejectionKind.MALFORMED_PAYLOAD,
                field=column,
            ) from e
    return value


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    decoded: dict[str, Any] = {}
    for key in row.keys():
        value = row[key]
        if key in JSON_COLUMNS and isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                logger.warning("Column %s holds invalid JSON; returning raw text", key)
        decoded[key] = value
    return decoded


def _translate(e: sqlite3.Error) -> RecordRejected:
    message = str(e)
    if isinstance(e, sqlite3.InterfaceError):
        return RecordRejected(message, kind=RejectionKind.MALFORMED_PAYLOAD)
    if isinstance(e, sqlite3.IntegrityError):
        return RecordRejected(message, code="SQLITE_CONSTRAINT", kind=RejectionKind.OTHER)
    return RecordRejected(message, code=type(e).__name__)


class SQLiteRecordStore:
    """Record store on a local SQLite database.

    Each call runs in a worker thread on its own connection; a lock
    serializes writers within the process.

    Args:
        path: Database file (":memory:" is not supported across threads).
        timeout: Busy timeout in seconds.
    """

    def __init__(self, path: Path | str, *, timeout: float = 30.0) -> None:
        self.path = Path(path)
        self._timeout = timeout
        self._lock = threading.Lock()
        self._unique_cache: dict[str, bool] = {}

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn

    async def _run(self, fn: Any, *args: Any) -> Any:
        def call() -> Any:
            with self._lock:
                conn = self._connect()
                try:
                    with conn:
                        return fn(conn, *args)
                except RecordRejected:
                    raise
                except sqlite3.OperationalError as e:
                    if "no such table" in str(e) or "database is locked" in str(e):
                        raise StorageError(str(e)) from e
                    raise _translate(e) from e
                except sqlite3.Error as e:
                    raise _translate(e) from e
                finally:
                    conn.close()

        return await asyncio.to_thread(call)

    async def create_table(
        self,
        table: str,
        columns: Iterable[str] = ARTIFACT_COLUMNS,
        *,
        unique: bool = True,
    ) -> None:
        """Create the artifact table if missing.

        Args:
            table: Table name.
            columns: Columns besides the integer ``id``.
            unique: Add a unique index on ``conflict_key``.
        """

        def create(conn: sqlite3.Connection) -> None:
            column_sql = ", ".join(f"{_quote(c)}" for c in columns)
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {_quote(table)} "
                f"(id INTEGER PRIMARY KEY AUTOINCREMENT, {column_sql})"
            )
            if unique:
                conn.execute(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS {_quote(table + '_conflict_key')} "
                    f"ON {_quote(table)} (conflict_key)"
                )

        await self._run(create)
        self._unique_cache.pop(table, None)

    async def supports_unique_constraint(self, table: str) -> bool:
        if table in self._unique_cache:
            return self._unique_cache[table]

        def probe(conn: sqlite3.Connection) -> bool:
            for index in conn.execute(f"PRAGMA index_list({_quote(table)})").fetchall():
                if not index["unique"]:
                    continue
                columns = [
                    info["name"]
                    for info in conn.execute(f"PRAGMA index_info({_quote(index['name'])})")
                ]
                if columns == ["conflict_key"]:
                    return True
            return False

        result: bool = await self._run(probe)
        self._unique_cache[table] = result
        return result

    @staticmethod
    def _select_by_id(conn: sqlite3.Connection, table: str, row_id: int) -> dict[str, Any]:
        row = conn.execute(f"SELECT * FROM {_quote(table)} WHERE id = ?", (row_id,)).fetchone()
        return _decode(row)

    async def upsert(self, table: str, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        columns = list(row)
        values = [_encode(c, row[c]) for c in columns]

        def upsert(conn: sqlite3.Connection) -> dict[str, Any]:
            names = ", ".join(_quote(c) for c in columns)
            placeholders = ", ".join("?" for _ in columns)
            updates = ", ".join(
                f"{_quote(c)} = excluded.{_quote(c)}" for c in columns if c != "conflict_key"
            )
            conn.execute(
                f"INSERT INTO {_quote(table)} ({names}) VALUES ({placeholders}) "
                f"ON CONFLICT (conflict_key) DO UPDATE SET {updates}",
                values,
            )
            stored = conn.execute(
                f"SELECT * FROM {_quote(table)} WHERE conflict_key = ?", (conflict_key,)
            ).fetchone()
            return _decode(stored)

        result: dict[str, Any] = await self._run(upsert)
        return result

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        columns = list(row)
        values = [_encode(c, row[c]) for c in columns]

        def insert(conn: sqlite3.Connection) -> dict[str, Any]:
            names = ", ".join(_quote(c) for c in columns)
            placeholders = ", ".join("?" for _ in columns)
            cursor = conn.execute(
                f"INSERT INTO {_quote(table)} ({names}) VALUES ({placeholders})", values
            )
            return self._select_by_id(conn, table, cursor.lastrowid or 0)

        result: dict[str, Any] = await self._run(insert)
        return result

    async def update_latest(
        self, table: str, row: dict[str, Any], conflict_key: str
    ) -> dict[str, Any] | None:
        columns = [c for c in row if c != "conflict_key"]
        values = [_encode(c, row[c]) for c in columns]

        def update(conn: sqlite3.Connection) -> dict[str, Any] | None:
            latest = conn.execute(
                f"SELECT id FROM {_quote(table)} WHERE conflict_key = ? "
                "ORDER BY id DESC LIMIT 1",
                (conflict_key,),
            ).fetchone()
            if latest is None:
                return None
            if columns:
                assignments = ", ".join(f"{_quote(c)} = ?" for c in columns)
                conn.execute(
                    f"UPDATE {_quote(table)} SET {assignments} WHERE id = ?",
                    [*values, latest["id"]],
                )
            return self._select_by_id(conn, table, latest["id"])

        result: dict[str, Any] | None = await self._run(update)
        return result

    async def fetch_latest(self, table: str, conflict_key: str) -> dict[str, Any] | None:
        def fetch(conn: sqlite3.Connection) -> dict[str, Any] | None:
            row = conn.execute(
                f"SELECT * FROM {_quote(table)} WHERE conflict_key = ? "
                "ORDER BY id DESC LIMIT 1",
                (conflict_key,),
            ).fetchone()
            return _decode(row) if row is not None else None

        result: dict[str, Any] | None = await self._run(fetch)
        return result
