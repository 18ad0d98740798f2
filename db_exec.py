# db_exec.py
from __future__ import annotations

from typing import Any, Optional, Sequence

from psycopg2.extensions import connection as Connection
from psycopg2.extras import RealDictCursor


def db_fetchone(conn: Connection, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
    """
    Execute on the provided connection so callers keep their transaction (and row locks).
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params or ())
        row = cur.fetchone()
        return dict(row) if row is not None else None


def db_execute(conn: Connection, sql: str, params: Optional[Sequence[Any]] = None) -> int:
    with conn.cursor() as cur:
        cur.execute(sql, params or ())
        return cur.rowcount
