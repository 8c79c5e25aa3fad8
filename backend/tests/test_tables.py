from datetime import date
from decimal import Decimal

import pytest
from psycopg import sql
from psycopg.errors import UniqueViolation

from backend.app.tables import MemoryTableClient, PgTableClient, RemoteError


class _FakeCursor:
    def __init__(self, rows=None, error=None):
        self.rows = list(rows or [])
        self.error = error
        self.executed = []
        self.rowcount = len(self.rows)

    def execute(self, sql, params=None):
        self.executed.append((sql, list(params or [])))
        if self.error is not None:
            raise self.error

    def fetchall(self):
        return list(self.rows)

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakePool:
    def __init__(self, cursor):
        self.conn = _FakeConn(cursor)

    def connection(self):
        return self.conn


def _render(query):
    # Identifiers are quoted by hand so no connection is needed.
    if isinstance(query, sql.Composed):
        return "".join(_render(part) for part in query)
    if isinstance(query, sql.Identifier):
        return ".".join(f'"{s}"' for s in query._obj)
    return query.as_string(None)


def test_pg_select_passes_filters_then_limit_as_params():
    cur = _FakeCursor(rows=[{"id": 1, "closing_usd": Decimal("10")}])
    client = PgTableClient(_FakePool(cur))

    rows = client.select("dailybalances", filters={"branch_id": 3}, order_by="date", descending=True, limit=1)

    assert rows == [{"id": 1, "closing_usd": Decimal("10")}]
    assert cur.executed[0][1] == [3, 1]


def test_pg_update_puts_values_before_filters():
    cur = _FakeCursor(rows=[{}])
    client = PgTableClient(_FakePool(cur))

    count = client.update("credits", {"status": True}, filters={"id": 500})

    assert count == 1
    assert cur.executed[0][1] == [True, 500]


def test_pg_errors_become_remote_errors_with_raw_message():
    cur = _FakeCursor(error=UniqueViolation("duplicate key value violates unique constraint"))
    client = PgTableClient(_FakePool(cur))

    with pytest.raises(RemoteError) as ex:
        client.insert("dailybalances", {"branch_id": 1, "date": date(2026, 3, 10)})

    assert ex.value.message == "duplicate key value violates unique constraint"
    assert ex.value.conflict is True
    assert ex.value.table == "dailybalances"
    assert ex.value.op == "insert"


def test_unknown_tables_are_refused_before_any_query():
    cur = _FakeCursor()
    client = PgTableClient(_FakePool(cur))
    with pytest.raises(ValueError):
        client.select("pg_catalog.pg_user")
    with pytest.raises(ValueError):
        MemoryTableClient().insert("accounts", {})
    assert cur.executed == []


def test_update_without_filters_is_refused():
    with pytest.raises(ValueError):
        MemoryTableClient().update("credits", {"status": True}, filters={})


def test_memory_enforces_one_balance_per_branch_day():
    client = MemoryTableClient()
    client.insert("dailybalances", {"branch_id": 1, "date": date(2026, 3, 10)})
    client.insert("dailybalances", {"branch_id": 2, "date": date(2026, 3, 10)})

    with pytest.raises(RemoteError) as ex:
        client.insert("dailybalances", {"branch_id": 1, "date": date(2026, 3, 10)})
    assert ex.value.conflict is True


def test_memory_upsert_replaces_on_conflict_key():
    client = MemoryTableClient()
    first = client.upsert("credits", {"key": "k1", "person": "Sami", "status": False}, on_conflict="key")
    second = client.upsert("credits", {"key": "k1", "person": "Sami", "status": True}, on_conflict="key")

    assert first["id"] == second["id"]
    assert [r["status"] for r in client.rows("credits")] == [True]


def test_memory_select_orders_and_limits():
    client = MemoryTableClient(
        seed={
            "dailybalances": [
                {"branch_id": 1, "date": date(2026, 3, 8)},
                {"branch_id": 1, "date": date(2026, 3, 10)},
                {"branch_id": 1, "date": date(2026, 3, 9)},
            ]
        }
    )
    rows = client.select("dailybalances", filters={"branch_id": 1}, order_by="date", descending=True, limit=2)
    assert [r["date"] for r in rows] == [date(2026, 3, 10), date(2026, 3, 9)]


def test_memory_seed_ids_do_not_collide_with_new_rows():
    client = MemoryTableClient(seed={"branches": [{"id": 7, "name": "Hamra"}]})
    row = client.insert("branches", {"name": "Tyre"})
    assert row["id"] == 8


def test_pg_insert_lists_columns_and_returns_the_row():
    cur = _FakeCursor(rows=[{"id": 9, "branch_id": 1}])
    client = PgTableClient(_FakePool(cur))

    row = client.insert("sales", {"amount_usd": Decimal("40.00"), "branch_id": 1})

    query, params = cur.executed[0]
    assert _render(query) == 'INSERT INTO "sales" ("amount_usd", "branch_id") VALUES (%s, %s) RETURNING *'
    assert params == [Decimal("40.00"), 1]
    assert row == {"id": 9, "branch_id": 1}


def test_pg_upsert_updates_every_column_but_the_conflict_key():
    cur = _FakeCursor(rows=[{"id": 3}])
    client = PgTableClient(_FakePool(cur))

    client.upsert("credits", {"key": "k1", "person": "Sami", "status": True}, on_conflict="key")

    query, params = cur.executed[0]
    assert _render(query) == (
        'INSERT INTO "credits" ("key", "person", "status") VALUES (%s, %s, %s) '
        'ON CONFLICT ("key") DO UPDATE SET "person" = EXCLUDED."person", "status" = EXCLUDED."status" RETURNING *'
    )
    assert params == ["k1", "Sami", True]
