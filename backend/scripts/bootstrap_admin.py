#!/usr/bin/env python3
import os
import sys
from pathlib import Path

import psycopg
from psycopg.rows import dict_row

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "db" / "migrations"


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def apply_migrations(conn) -> list[str]:
    applied = []
    for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
        conn.execute(path.read_text(encoding="utf-8"))
        applied.append(path.name)
    return applied


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2

    name = os.getenv("BOOTSTRAP_ADMIN_NAME", "Admin").strip()
    if not name:
        print("bootstrap_admin: BOOTSTRAP_ADMIN_NAME is empty", file=sys.stderr)
        return 2
    branch_name = os.getenv("BOOTSTRAP_BRANCH_NAME", "Main").strip() or "Main"

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            if _truthy(os.getenv("BOOTSTRAP_MIGRATE", "1")):
                for applied in apply_migrations(conn):
                    print(f"migration: {applied}")

            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO branches (name)
                    VALUES (%s)
                    ON CONFLICT (name) DO NOTHING
                    """,
                    (branch_name,),
                )

                cur.execute("SELECT id FROM users WHERE name = %s AND role = 'admin'", (name,))
                row = cur.fetchone()
                if row:
                    # Idempotent: don't create duplicate users.
                    return 0

                cur.execute(
                    """
                    INSERT INTO users (name, role)
                    VALUES (%s, 'admin')
                    RETURNING id
                    """,
                    (name,),
                )
                user_id = cur.fetchone()["id"]

    print("BOOTSTRAP_ADMIN_CREATED")
    print(f"name: {name}")
    print(f"user_id: {user_id}")
    print(f"branch: {branch_name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
