"""
db/connection.py
-----------------
Process-wide psycopg2 pool for the saved-plan store.

    with get_conn() as conn:          # commit on success, rollback on error
        plan_repo.upsert_plan(conn, plan)

The pool is created on first use from the POSTGRES_* settings in config.py
and torn down with close_pool() (API shutdown, migration script).
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg2
import psycopg2.pool

import config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def connection_settings() -> dict[str, Any]:
    return {
        "host":     config.POSTGRES_HOST,
        "port":     config.POSTGRES_PORT,
        "dbname":   config.POSTGRES_DB,
        "user":     config.POSTGRES_USER,
        "password": config.POSTGRES_PASSWORD,
    }


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            settings = connection_settings()
            logger.info("Opening plan-store pool %s@%s:%s (%d-%d conns)",
                        settings["dbname"], settings["host"], settings["port"],
                        config.POSTGRES_MIN_CONN, config.POSTGRES_MAX_CONN)
            _pool = psycopg2.pool.ThreadedConnectionPool(
                config.POSTGRES_MIN_CONN, config.POSTGRES_MAX_CONN, **settings,
            )
        return _pool


@contextmanager
def get_conn() -> Iterator[Any]:
    """One pooled connection per transaction; the connection always goes back to the pool."""
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None and not _pool.closed:
            _pool.closeall()
        _pool = None


def ping() -> bool:
    """Health probe: the plan store answers a trivial query."""
    try:
        with get_conn() as conn, conn.cursor() as cur:
            cur.execute("SELECT 1")
            return cur.fetchone() == (1,)
    except psycopg2.Error as exc:
        logger.warning("Plan store unreachable: %s", exc)
        return False
