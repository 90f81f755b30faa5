"""
crewflow.database.rest_store — DataStore over a PostgREST endpoint
===================================================================

Implements the :class:`~crewflow.database.store.DataStore` contract against
a hosted Supabase project (``{SUPABASE_URL}/rest/v1``).  Filters become
PostgREST query operators (``eq.``, ``neq.``, ``in.(…)``, ``is.null``, …),
upserts use ``on_conflict`` plus a ``Prefer: resolution=…`` header, and every
request is bounded by the client timeout.

Timestamp strings coming back are parsed into aware UTC datetimes using the
column types from :mod:`crewflow.database.models`, so callers see the same
row shapes as with :class:`~crewflow.database.store.SqlStore`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy import DateTime, MetaData

from crewflow.database.models import Base
from crewflow.database.store import (
    DuplicateRowError,
    Filters,
    Predicate,
    Row,
    StoreError,
    as_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return str(value)


def _quoted(value: Any) -> str:
    text = _literal(value).replace('"', '\\"')
    return f'"{text}"'


def encode_filter(value: Any) -> str:
    """Render one filter value as a PostgREST operator expression."""
    if value is None:
        return "is.null"
    if not isinstance(value, Predicate):
        return f"eq.{_literal(value)}"
    if value.op == "neq" and value.value is None:
        return "not.is.null"
    if value.op == "in":
        return f"in.({','.join(_quoted(v) for v in value.value)})"
    if value.op in ("neq", "gt", "gte", "lt", "lte"):
        return f"{value.op}.{_literal(value.value)}"
    raise StoreError(f"Unsupported filter operator: {value.op}")


def _jsonable(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: as_utc(val).isoformat() if isinstance(val, datetime) else val
        for key, val in row.items()
    }


class RestStore:
    """:class:`DataStore` speaking PostgREST over :mod:`httpx`."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        metadata: MetaData = Base.metadata,
    ) -> None:
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        self._datetime_columns = {
            name: {c.name for c in table.c if isinstance(c.type, DateTime)}
            for name, table in metadata.tables.items()
        }

    def close(self) -> None:
        self._client.close()

    # -----------------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------------
    def _params(self, filters: Filters | None) -> dict[str, str]:
        return {key: encode_filter(val) for key, val in (filters or {}).items()}

    def _parse(self, table: str, row: Mapping[str, Any]) -> Row:
        parsed = dict(row)
        for col in self._datetime_columns.get(table, ()):
            raw = parsed.get(col)
            if isinstance(raw, str):
                parsed[col] = as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
        return parsed

    def _send(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> list[Row]:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = self._client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc

        if resp.status_code == 409:
            raise DuplicateRowError(f"{method} {table} conflicted: {resp.text}")
        if resp.is_error:
            raise StoreError(f"{method} {table} → HTTP {resp.status_code}: {resp.text}")
        if not resp.content:
            return []
        body = resp.json()
        rows = body if isinstance(body, list) else [body]
        return [self._parse(table, r) for r in rows]

    # -----------------------------------------------------------------------
    # Contract
    # -----------------------------------------------------------------------
    def query(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        params = self._params(filters)
        params["select"] = ",".join(columns) if columns else "*"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return self._send("GET", table, params=params)

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        rows = self._send("POST", table, json=_jsonable(row), prefer="return=representation")
        if not rows:
            raise StoreError(f"insert {table} returned no row")
        return rows[0]

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_keys: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Row | None:
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        rows = self._send(
            "POST",
            table,
            params={"on_conflict": ",".join(conflict_keys)},
            json=_jsonable(row),
            prefer=f"resolution={resolution},return=representation",
        )
        return rows[0] if rows else None

    def patch(self, table: str, filters: Filters, fields: Mapping[str, Any]) -> int:
        if not filters:
            raise StoreError(f"refusing unfiltered patch on {table}")
        rows = self._send(
            "PATCH", table,
            params=self._params(filters), json=_jsonable(fields), prefer="return=representation",
        )
        return len(rows)

    def delete(self, table: str, filters: Filters) -> int:
        if not filters:
            raise StoreError(f"refusing unfiltered delete on {table}")
        rows = self._send(
            "DELETE", table, params=self._params(filters), prefer="return=representation",
        )
        return len(rows)
