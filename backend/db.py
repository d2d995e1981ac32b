"""
Database connection helper.

This module centralizes how connections are created. Right now we use
`psycopg.connect(settings.db_url)` which opens a new connection per call.
The tracker only talks to the database on a cache miss and once per bulk
flush, so a connection per call is cheap enough.

Usage:
    from db import get_conn
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")

Note: switching to a connection pool will change the `get_conn()`
implementation — repository code should remain unchanged.
"""

import psycopg
from settings import settings


def get_conn(db_url: str | None = None):
    """Return a new psycopg connection using `db_url` or `settings.db_url`.

    We add a short `connect_timeout` so a down database surfaces as an
    error (and a retry) instead of a hang.
    """

    return psycopg.connect(db_url or settings.db_url, connect_timeout=5)
