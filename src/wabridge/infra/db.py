"""psycopg2 connection and transaction helpers.

Every store call opens its own short-lived connection; there is no pool.
"""

import os
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor
from psycopg2.extras import RealDictCursor


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def get_conn() -> PgConnection:
    """Open a connection to DATABASE_URL (URL or key=value form).

    DB_PASSWORD is supplied separately when the DSN carries no password, so the
    secret can stay out of the URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    password = os.environ.get("DB_PASSWORD", "")
    if password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None, *, dict_rows: bool = False) -> Iterator[PgCursor]:
    """Run a block in one transaction: commit on success, roll back on error.

    Args:
        conn: Connection to reuse. When None a new one is opened and closed on
            exit.
        dict_rows: Yield a RealDictCursor (rows as dicts keyed by column).

    Example:
        with txn(dict_rows=True) as cur:
            cur.execute("SELECT status FROM session_status WHERE id = 1")
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    cursor_factory = RealDictCursor if dict_rows else None
    try:
        with conn.cursor(cursor_factory=cursor_factory) as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
