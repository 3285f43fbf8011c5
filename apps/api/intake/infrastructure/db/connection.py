"""PostgreSQL pool shared by the repository modules."""

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from psycopg import Cursor
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL")
DB_POOL_MIN_SIZE = int(os.environ.get("DB_POOL_MIN_SIZE", "1"))
# Uploads and the callback both hit the database from worker threads.
DB_POOL_MAX_SIZE = int(os.environ.get("DB_POOL_MAX_SIZE", "8"))
DB_POOL_TIMEOUT_SECONDS = float(os.environ.get("DB_POOL_TIMEOUT_SECONDS", "10"))

pool: Optional[ConnectionPool] = None


def init_pool(conninfo: Optional[str] = None) -> ConnectionPool:
    global pool
    if pool is not None:
        return pool
    conninfo = conninfo or DATABASE_URL
    if not conninfo:
        raise RuntimeError("DATABASE_URL is not set; documents and records live in PostgreSQL")

    pool = ConnectionPool(
        conninfo=conninfo,
        min_size=DB_POOL_MIN_SIZE,
        max_size=DB_POOL_MAX_SIZE,
        timeout=DB_POOL_TIMEOUT_SECONDS,
        name="intake",
        kwargs={"row_factory": dict_row},
    )
    logger.info("Database pool ready (%d-%d connections)", DB_POOL_MIN_SIZE, DB_POOL_MAX_SIZE)
    return pool


def close_pool() -> None:
    global pool
    if pool is None:
        return
    pool.close()
    pool = None
    logger.info("Database pool closed")


def get_pool() -> ConnectionPool:
    if pool is None:
        raise RuntimeError("Database pool is not initialized")
    return pool


@contextmanager
def cursor() -> Iterator[Cursor]:
    """
    Cursor on a pooled connection.

    The pool commits when the block exits cleanly and rolls back when it
    raises, so repositories never commit by hand.
    """
    with get_pool().connection() as conn, conn.cursor() as cur:
        yield cur
