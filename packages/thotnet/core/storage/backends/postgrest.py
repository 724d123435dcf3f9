"""PostgREST record store (e.g. a Supabase project's REST endpoint).

Error bodies are passed through as ``RecordRejected`` with the backend's
code, leaving classification to the writer.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from thotnet.core.storage.errors import RecordRejected, StorageError

logger = logging.getLogger(__name__)

# Postgres: ON CONFLICT target has no matching unique constraint
_NO_UNIQUE_CONSTRAINT = "42P10"
# Undefined column, as reported by Postgres and by the PostgREST schema cache
_UNKNOWN_COLUMN_CODES = frozenset({"42703", "PGRST204"})

_LATEST_ORDER = "created_at.desc"
_FALLBACK_ORDER = "id.desc"


class PostgrestRecordStore:
    """Record store speaking the PostgREST HTTP dialect.

    Args:
        base_url: Project URL; ``/rest/v1`` is appended.
        api_key: Service key sent as ``apikey`` and bearer token.
        unique: Whether ``conflict_key`` carries a unique constraint.
        timeout: Request timeout in seconds.
        client: Optional shared httpx client.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        unique: bool = True,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._unique = unique
        self._timeout = timeout
        self._client = client
        # Tables whose created_at column is missing; ordered by id instead
        self._order_by_id: set[str] = set()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self._rest_url}/{table}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, params=params, json=json_body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, params=params, json=json_body, headers=headers
                    )
        except httpx.HTTPError as e:
            raise StorageError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text[:300]}
            message = body.get("message") or f"HTTP {response.status_code}"
            if body.get("details"):
                message = f"{message} ({body['details']})"
            if response.status_code >= 500 and not body.get("code"):
                raise StorageError(message)
            raise RecordRejected(message, code=body.get("code"))

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def supports_unique_constraint(self, table: str) -> bool:
        return self._unique

    async def upsert(self, table: str, row: dict[str, Any], conflict_key: str) -> dict[str, Any]:
        try:
            rows = await self._request(
                "POST",
                table,
                params={"on_conflict": "conflict_key"},
                json_body=[row],
                prefer="resolution=merge-duplicates,return=representation",
            )
        except RecordRejected as e:
            if e.code != _NO_UNIQUE_CONSTRAINT:
                raise
            logger.warning("No unique constraint on %s.conflict_key; updating latest instead", table)
            self._unique = False
            updated = await self.update_latest(table, row, conflict_key)
            return updated if updated is not None else await self.insert(table, row)
        return rows[0] if rows else dict(row)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request("POST", table, json_body=[row], prefer="return=representation")
        return rows[0] if rows else dict(row)

    async def update_latest(
        self, table: str, row: dict[str, Any], conflict_key: str
    ) -> dict[str, Any] | None:
        latest = await self.fetch_latest(table, conflict_key)
        if latest is None or "id" not in latest:
            return None
        rows = await self._request(
            "PATCH",
            table,
            params={"id": f"eq.{latest['id']}"},
            json_body=row,
            prefer="return=representation",
        )
        return rows[0] if rows else {**latest, **row}

    async def fetch_latest(self, table: str, conflict_key: str) -> dict[str, Any] | None:
        if table not in self._order_by_id:
            try:
                return await self._fetch_latest(table, conflict_key, _LATEST_ORDER)
            except RecordRejected as e:
                if e.code not in _UNKNOWN_COLUMN_CODES or "created_at" not in str(e):
                    raise
                logger.warning("%s has no created_at column; ordering by id", table)
                self._order_by_id.add(table)
        return await self._fetch_latest(table, conflict_key, _FALLBACK_ORDER)

    async def _fetch_latest(
        self, table: str, conflict_key: str, order: str
    ) -> dict[str, Any] | None:
        rows = await self._request(
            "GET",
            table,
            params={
                "select": "*",
                "conflict_key": f"eq.{conflict_key}",
                "order": order,
                "limit": "1",
            },
        )
        return rows[0] if rows else None
