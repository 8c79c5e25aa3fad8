import os
from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

DATABASE_URL = os.getenv("DATABASE_URL") or "postgresql://localhost/dailybalance"

def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default

_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 5)


def open_pool(conninfo: str = DATABASE_URL) -> ConnectionPool:
    # Rows come back as dicts so table clients can hand them out unchanged.
    return ConnectionPool(
        conninfo=conninfo,
        min_size=_POOL_MIN,
        max_size=_POOL_MAX,
        kwargs={"row_factory": dict_row},
        open=True,
    )


@contextmanager
def pooled_conn(pool: ConnectionPool):
    # `with pooled_conn(pool) as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    with pool.connection() as conn:
        with conn:
            yield conn


def close_pool(pool: ConnectionPool) -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    try:
        pool.close()
    except Exception:
        pass
