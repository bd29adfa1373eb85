"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they import without an alembic context.
DATABASE_URL may be a URL or a libpq key=value DSN; both become a
SQLAlchemy psycopg2 URL, with DB_PASSWORD filling a missing password.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

DRIVERNAME = "postgresql+psycopg2"


def libpq_dsn_to_url(dsn: str) -> URL:
    """Convert a libpq DSN; a host starting with '/' is a unix socket dir."""
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD") or None
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return URL.create(
            DRIVERNAME,
            username=params.get("user"),
            password=password,
            database=params.get("dbname"),
            query={"host": host},
        )
    return URL.create(
        DRIVERNAME,
        username=params.get("user"),
        password=password,
        host=host,
        port=int(params.get("port", "5432")),
        database=params.get("dbname"),
    )


def get_database_url() -> str:
    """SQLAlchemy URL string for DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" not in raw:
        url = libpq_dsn_to_url(raw)
    else:
        if raw.startswith("postgres://"):
            raw = "postgresql://" + raw[len("postgres://"):]
        url = make_url(raw).set(drivername=DRIVERNAME)
        db_password = os.environ.get("DB_PASSWORD")
        if db_password and not url.password:
            url = url.set(password=db_password)

    return url.render_as_string(hide_password=False)
