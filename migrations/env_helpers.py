"""Database URL resolution for Alembic.

Kept apart from env.py so it can be imported without an Alembic context.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse

from psycopg2.extensions import parse_dsn

_DRIVER_SCHEME = "postgresql+psycopg2://"


def _with_password(netloc_url: str, password: str) -> str:
    parsed = urlparse(netloc_url)
    if parsed.password or not password:
        return netloc_url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname or ''}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return parsed._replace(netloc=netloc).geturl()


def keyword_dsn_to_url(dsn: str) -> str:
    """Convert a libpq ``key=value`` DSN into a SQLAlchemy URL.

    A socket directory host (leading ``/``) goes to the query string.
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    user = quote_plus(params.get("user", ""))
    dbname = quote_plus(params.get("dbname", ""))
    auth = f"{user}:{quote_plus(password)}@" if password else f"{user}@"
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}{auth}/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}{auth}{host}:{params.get('port', '5432')}/{dbname}"


def database_url() -> str:
    """SQLAlchemy URL from DATABASE_URL (URL or keyword DSN form).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return keyword_dsn_to_url(url)

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_SCHEME + url[len(scheme):]
            break
    return _with_password(url, os.environ.get("DB_PASSWORD", ""))
