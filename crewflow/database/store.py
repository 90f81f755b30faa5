"""
crewflow.database.store — Data-Store Contract & SQL Implementation
===================================================================

Every service in Crewflow talks to storage through the same five calls::

    store.query("crew_members", {"group_id": gid, "muted": False})
    store.insert("crews", {...})
    store.upsert("notification_log", row, ["recipient_id", ...], ignore_duplicates=True)
    store.patch("connections", {"id": 7}, {"status": "muted"})
    store.delete("connections", {"user_id": a, "friend_id": b})

Rows are plain dicts.  Filters are a mapping of column → value where a plain
value means equality, ``None`` means ``IS NULL``, and the helpers below
(:func:`neq`, :func:`in_`, :func:`gt`, :func:`gte`, :func:`lt`, :func:`lte`)
express the remaining predicates.

Two implementations exist:

* :class:`SqlStore` — SQLAlchemy Core over the declarative tables, using the
  dialect's native ``ON CONFLICT`` for upserts (PostgreSQL and SQLite).
* :class:`~crewflow.database.rest_store.RestStore` — the same contract over a
  PostgREST endpoint (hosted Supabase).

Collaborator failures surface as :class:`StoreError`; a unique-constraint
violation on a plain insert surfaces as :class:`DuplicateRowError`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import Engine, MetaData, Table, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from crewflow.database.models import Base

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Filters = Mapping[str, Any]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class StoreError(Exception):
    """A data-store call failed (connection, query, or response error)."""


class DuplicateRowError(StoreError):
    """An insert collided with a unique constraint."""


# ---------------------------------------------------------------------------
# Filter predicates
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Predicate:
    op: str
    value: Any


def neq(value: Any) -> Predicate:
    return Predicate("neq", value)


def in_(values: Iterable[Any]) -> Predicate:
    return Predicate("in", tuple(values))


def gt(value: Any) -> Predicate:
    return Predicate("gt", value)


def gte(value: Any) -> Predicate:
    return Predicate("gte", value)


def lt(value: Any) -> Predicate:
    return Predicate("lt", value)


def lte(value: Any) -> Predicate:
    return Predicate("lte", value)


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware UTC datetime (naive values are assumed UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
class DataStore(Protocol):
    def query(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_keys: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Row | None: ...

    def patch(self, table: str, filters: Filters, fields: Mapping[str, Any]) -> int: ...

    def delete(self, table: str, filters: Filters) -> int: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------
_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _clause(column, value):
    if value is None:
        return column.is_(None)
    if not isinstance(value, Predicate):
        return column == value
    if value.op == "neq":
        return column.is_not(None) if value.value is None else column != value.value
    if value.op == "in":
        return column.in_(value.value)
    if value.op == "gt":
        return column > value.value
    if value.op == "gte":
        return column >= value.value
    if value.op == "lt":
        return column < value.value
    if value.op == "lte":
        return column <= value.value
    raise StoreError(f"Unsupported filter operator: {value.op}")


def _normalise(row: Mapping[str, Any]) -> Row:
    return {
        key: as_utc(val) if isinstance(val, datetime) else val
        for key, val in row.items()
    }


class SqlStore:
    """:class:`DataStore` backed by a SQLAlchemy :class:`Engine`.

    Each call runs in its own short transaction (``engine.begin()``), so a
    service never holds a connection across a channel send.
    """

    def __init__(self, engine: Engine, metadata: MetaData = Base.metadata) -> None:
        self.engine = engine
        self._tables = metadata.tables

    def _table(self, name: str) -> Table:
        try:
            return self._tables[name]
        except KeyError:
            raise StoreError(f"Unknown table: {name}") from None

    def _where(self, table: Table, filters: Filters | None) -> list:
        clauses = []
        for key, value in (filters or {}).items():
            if key not in table.c:
                raise StoreError(f"Unknown column {table.name}.{key}")
            clauses.append(_clause(table.c[key], value))
        return clauses

    # -- reads --------------------------------------------------------------
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
        tbl = self._table(table)
        cols = [tbl.c[c] for c in columns] if columns else [tbl]
        stmt = select(*cols).where(*self._where(tbl, filters))
        if order_by:
            col = tbl.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self.engine.connect() as conn:
                return [_normalise(r) for r in conn.execute(stmt).mappings()]
        except SQLAlchemyError as exc:
            raise StoreError(f"query {table} failed: {exc}") from exc

    # -- writes -------------------------------------------------------------
    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        tbl = self._table(table)
        stmt = insert(tbl).values(**row).returning(*tbl.c)
        try:
            with self.engine.begin() as conn:
                return _normalise(conn.execute(stmt).mappings().one())
        except IntegrityError as exc:
            raise DuplicateRowError(f"insert {table} conflicted: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"insert {table} failed: {exc}") from exc

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_keys: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Row | None:
        """Insert *row*, resolving a collision on *conflict_keys*.

        With ``ignore_duplicates=True`` a collision leaves the existing row
        untouched and ``None`` is returned.  Otherwise the non-key fields of
        *row* overwrite the existing row and the merged row is returned.
        """
        tbl = self._table(table)
        dialect_insert = _DIALECT_INSERTS.get(self.engine.dialect.name)
        if dialect_insert is None:
            raise StoreError(f"upsert unsupported on dialect {self.engine.dialect.name}")

        stmt = dialect_insert(tbl).values(**row)
        updates = {k: stmt.excluded[k] for k in row if k not in conflict_keys}
        if ignore_duplicates or not updates:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_keys))
        else:
            stmt = stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=updates)
        stmt = stmt.returning(*tbl.c)

        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise StoreError(f"upsert {table} failed: {exc}") from exc
        return _normalise(result) if result is not None else None

    def patch(self, table: str, filters: Filters, fields: Mapping[str, Any]) -> int:
        """Update matching rows; returns the number of rows touched."""
        if not filters:
            raise StoreError(f"refusing unfiltered patch on {table}")
        tbl = self._table(table)
        stmt = update(tbl).where(*self._where(tbl, filters)).values(**fields)
        try:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StoreError(f"patch {table} failed: {exc}") from exc

    def delete(self, table: str, filters: Filters) -> int:
        """Delete matching rows; returns the number of rows removed."""
        if not filters:
            raise StoreError(f"refusing unfiltered delete on {table}")
        tbl = self._table(table)
        stmt = delete(tbl).where(*self._where(tbl, filters))
        try:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StoreError(f"delete {table} failed: {exc}") from exc
