"""
Table-level access to the remote backend.

Everything the service persists goes through a `TableClient`: a handful of
select/insert/upsert/update calls against named tables. Each call stands on
its own (commits on success), there is no cross-call transaction.
"""
from __future__ import annotations

import copy
import threading
from typing import Any, Optional, Protocol

import psycopg
from psycopg import sql
from psycopg.errors import UniqueViolation  # type: ignore
from psycopg_pool import ConnectionPool

from .db import pooled_conn

TABLES = {
    "branches",
    "users",
    "settings",
    "dailybalances",
    "credits",
    "payments",
    "sales",
    "withdrawals",
    "daniel",
}

# Mirrors the unique constraints in `backend/db/migrations/001_init.sql`.
UNIQUE_KEYS = {
    "dailybalances": [("branch_id", "date")],
    "credits": [("key",)],
    "settings": [("key",)],
}


class RemoteError(Exception):
    """A table operation failed on the backend. `message` is the raw backend text."""

    def __init__(self, message: str, *, table: Optional[str] = None, op: Optional[str] = None, conflict: bool = False):
        super().__init__(message)
        self.message = message
        self.table = table
        self.op = op
        self.conflict = conflict


class TableClient(Protocol):
    def select(
        self,
        table: str,
        *,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]: ...

    def insert(self, table: str, row: dict) -> dict: ...

    def upsert(self, table: str, row: dict, *, on_conflict: str) -> dict: ...

    def update(self, table: str, values: dict, *, filters: dict) -> int: ...


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"unknown table: {table}")


def _where(filters: Optional[dict]) -> tuple[sql.Composable, list[Any]]:
    if not filters:
        return sql.SQL(""), []
    parts = []
    params: list[Any] = []
    for col, val in filters.items():
        if val is None:
            parts.append(sql.SQL("{} IS NULL").format(sql.Identifier(col)))
        else:
            parts.append(sql.SQL("{} = %s").format(sql.Identifier(col)))
            params.append(val)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params


class PgTableClient:
    def __init__(self, pool: ConnectionPool):
        self._pool = pool

    def _run(self, op: str, table: str, query: sql.Composable, params: list[Any], fetch: str):
        try:
            with pooled_conn(self._pool) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    if fetch == "all":
                        return cur.fetchall() or []
                    if fetch == "one":
                        return cur.fetchone() or {}
                    return cur.rowcount
        except psycopg.Error as exc:
            raise RemoteError(str(exc), table=table, op=op, conflict=isinstance(exc, UniqueViolation)) from exc

    def select(self, table, *, filters=None, order_by=None, descending=False, limit=None):
        _check_table(table)
        where, params = _where(filters)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(table)) + where
        if order_by:
            direction = sql.SQL(" DESC") if descending else sql.SQL(" ASC")
            query = query + sql.SQL(" ORDER BY {}").format(sql.Identifier(order_by)) + direction
        if limit is not None:
            query = query + sql.SQL(" LIMIT %s")
            params.append(int(limit))
        return self._run("select", table, query, params, "all")

    def insert(self, table, row):
        _check_table(table)
        cols = list(row.keys())
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
        )
        return self._run("insert", table, query, [row[c] for c in cols], "one")

    def upsert(self, table, row, *, on_conflict):
        _check_table(table)
        cols = list(row.keys())
        updates = [c for c in cols if c != on_conflict]
        if updates:
            action = sql.SQL("DO UPDATE SET ") + sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c)) for c in updates
            )
        else:
            action = sql.SQL("DO NOTHING")
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) {} RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
            sql.Identifier(on_conflict),
            action,
        )
        return self._run("upsert", table, query, [row[c] for c in cols], "one")

    def update(self, table, values, *, filters):
        _check_table(table)
        if not filters:
            raise ValueError("update requires at least one filter")
        cols = list(values.keys())
        where, where_params = _where(filters)
        query = sql.SQL("UPDATE {} SET {}").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in cols),
        ) + where
        return self._run("update", table, query, [values[c] for c in cols] + where_params, "count")


def _sort_key(value):
    # None sorts first.
    return (value is not None, value)


class MemoryTableClient:
    """In-process tables with the same unique keys as the SQL schema."""

    def __init__(self, seed: Optional[dict[str, list[dict]]] = None):
        self._lock = threading.Lock()
        self._tables: dict[str, list[dict]] = {t: [] for t in TABLES}
        self._next_id = 1
        for table, rows in (seed or {}).items():
            for row in rows:
                self.insert(table, row)

    def rows(self, table: str) -> list[dict]:
        _check_table(table)
        with self._lock:
            return copy.deepcopy(self._tables[table])

    def _matches(self, row: dict, filters: Optional[dict]) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    def _conflicting(self, table: str, row: dict) -> Optional[dict]:
        for cols in UNIQUE_KEYS.get(table, []):
            probe = tuple(row.get(c) for c in cols)
            for existing in self._tables[table]:
                if tuple(existing.get(c) for c in cols) == probe:
                    return existing
        return None

    def select(self, table, *, filters=None, order_by=None, descending=False, limit=None):
        _check_table(table)
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._tables[table] if self._matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[: int(limit)]
        return rows

    def _insert_locked(self, table: str, row: dict) -> dict:
        stored = copy.deepcopy(row)
        if stored.get("id") is None:
            stored["id"] = self._next_id
            self._next_id += 1
        elif isinstance(stored["id"], int):
            self._next_id = max(self._next_id, stored["id"] + 1)
        if self._conflicting(table, stored):
            raise RemoteError(
                f'duplicate key value violates unique constraint on "{table}"',
                table=table,
                op="insert",
                conflict=True,
            )
        self._tables[table].append(stored)
        return copy.deepcopy(stored)

    def insert(self, table, row):
        _check_table(table)
        with self._lock:
            return self._insert_locked(table, row)

    def upsert(self, table, row, *, on_conflict):
        _check_table(table)
        with self._lock:
            for existing in self._tables[table]:
                if existing.get(on_conflict) == row.get(on_conflict):
                    existing.update(copy.deepcopy(row))
                    return copy.deepcopy(existing)
            return self._insert_locked(table, row)

    def update(self, table, values, *, filters):
        _check_table(table)
        if not filters:
            raise ValueError("update requires at least one filter")
        count = 0
        with self._lock:
            for existing in self._tables[table]:
                if self._matches(existing, filters):
                    existing.update(copy.deepcopy(values))
                    count += 1
        return count
