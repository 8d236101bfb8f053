"""Postgres-backed record store for the user directory and flow-account pool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

import psycopg
from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .domain.contracts import FLOW_ACCOUNTS, USERS, Record
from .domain.errors import InvalidRequest, StoreConflict, StoreWriteFailed

# Columns each table exposes to the engine; anything else is rejected before
# it reaches SQL.
TABLE_COLUMNS: dict[str, frozenset[str]] = {
    USERS: frozenset(
        {"id", "email", "status", "subscription_expiry", "personal_token", "pool_code", "created_at", "updated_at"}
    ),
    FLOW_ACCOUNTS: frozenset(
        {"id", "code", "email", "password", "occupancy", "status", "created_at", "updated_at"}
    ),
}


class PostgresRecordStore:
    """Generic key/filter/update access to the ``users`` and ``flow_accounts`` tables."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def get_by_id(self, table: str, record_id: Any) -> Record | None:
        """Fetch one row by primary key or return ``None``."""
        query = sql.SQL("SELECT * FROM {} WHERE id = %s").format(self._table(table))
        rows = self._fetch(query, (record_id,))
        return rows[0] if rows else None

    def filter_equals(self, table: str, field: str, value: Any) -> list[Record]:
        """Return every row whose ``field`` equals ``value`` (``IS NULL`` for ``None``)."""
        column = self._column(table, field)
        if value is None:
            query = sql.SQL("SELECT * FROM {} WHERE {} IS NULL").format(self._table(table), column)
            return self._fetch(query, ())
        query = sql.SQL("SELECT * FROM {} WHERE {} = %s").format(self._table(table), column)
        return self._fetch(query, (value,))

    def filter_less_than(
        self,
        table: str,
        field: str,
        value: Any,
        order_by: Sequence[str],
        limit: int | None = None,
    ) -> list[Record]:
        """Return rows with ``field < value`` ordered ascending by ``order_by``."""
        query = sql.SQL("SELECT * FROM {} WHERE {} < %s{}").format(
            self._table(table),
            self._column(table, field),
            self._ordering(table, order_by, limit),
        )
        params: tuple[Any, ...] = (value, limit) if limit is not None else (value,)
        return self._fetch(query, params)

    def select_all(self, table: str, order_by: Sequence[str] | None = None) -> list[Record]:
        """Return the whole table, optionally ordered ascending by ``order_by``."""
        query = sql.SQL("SELECT * FROM {}{}").format(
            self._table(table),
            self._ordering(table, order_by or (), None),
        )
        return self._fetch(query, ())

    def update(self, table: str, record_id: Any, fields: dict[str, Any]) -> Record:
        """Write ``fields`` on one row and return the updated row."""
        values = self._stamp(fields)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(self._column(table, name)) for name in values
        )
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(self._table(table), assignments)
        rows = self._write(query, (*values.values(), record_id))
        if not rows:
            raise StoreWriteFailed(f"{table} record {record_id} not found")
        return rows[0]

    def insert(self, table: str, fields: dict[str, Any]) -> Record:
        """Insert one row and return it as stored."""
        values = self._stamp(fields, creating=True)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            self._table(table),
            sql.SQL(", ").join(self._column(table, name) for name in values),
            sql.SQL(", ").join(sql.Placeholder() for _ in values),
        )
        rows = self._write(query, tuple(values.values()))
        return rows[0]

    def _fetch(self, query: sql.Composable, params: Sequence[Any]) -> list[Record]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    return list(cur.fetchall())
        except psycopg.Error as exc:
            raise StoreWriteFailed(f"record store read failed: {exc}") from exc

    def _write(self, query: sql.Composable, params: Sequence[Any]) -> list[Record]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    rows = list(cur.fetchall())
                conn.commit()
        except errors.UniqueViolation as exc:
            detail = exc.diag.message_detail or str(exc)
            raise StoreConflict(f"value already in use: {detail}") from exc
        except psycopg.Error as exc:
            raise StoreWriteFailed(str(exc)) from exc
        return rows

    def _stamp(self, fields: dict[str, Any], creating: bool = False) -> dict[str, Any]:
        if not fields:
            raise InvalidRequest("no fields to write")
        values = dict(fields)
        now = datetime.now(timezone.utc)
        values["updated_at"] = now
        if creating:
            values.setdefault("created_at", now)
        return values

    def _ordering(self, table: str, order_by: Sequence[str], limit: int | None) -> sql.Composable:
        parts: list[sql.Composable] = []
        if order_by:
            parts.append(
                sql.SQL(" ORDER BY {}").format(
                    sql.SQL(", ").join(self._column(table, name) for name in order_by)
                )
            )
        if limit is not None:
            parts.append(sql.SQL(" LIMIT %s"))
        return sql.Composed(parts)

    def _table(self, table: str) -> sql.Identifier:
        if table not in TABLE_COLUMNS:
            raise InvalidRequest(f"unknown table {table!r}")
        return sql.Identifier(table)

    def _column(self, table: str, field: str) -> sql.Identifier:
        if field not in TABLE_COLUMNS.get(table, frozenset()):
            raise InvalidRequest(f"unknown column {table}.{field}")
        return sql.Identifier(field)
