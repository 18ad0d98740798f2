# db.py
import logging
from contextlib import contextmanager

import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

logger = logging.getLogger("tenure.db")

_pool: ThreadedConnectionPool | None = None


def init_pool():
    """
    Create the shared connection pool. Threaded because approval and payment
    requests hold row locks from FastAPI's worker threads concurrently.
    """
    global _pool
    psycopg2.extras.register_uuid()
    if _pool is None:
        _pool = ThreadedConnectionPool(
            minconn=1,
            maxconn=settings.DB_POOL_MAX,
            dsn=settings.DATABASE_URL,
            connect_timeout=5,
        )
        logger.info("db pool ready maxconn=%s", settings.DB_POOL_MAX)


def close_pool():
    global _pool
    if _pool:
        _pool.closeall()
        _pool = None


def _session_limits(cur, *, snapshot: bool) -> None:
    # SET LOCAL: limits die with the transaction, pooled connections stay clean
    if snapshot:
        cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ;")
    cur.execute("SELECT set_config('statement_timeout', %s, true);", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
    cur.execute("SELECT set_config('lock_timeout', %s, true);", (f"{settings.DB_LOCK_TIMEOUT_MS}ms",))
    cur.execute("SET LOCAL application_name = 'tenure_payouts';")


@contextmanager
def get_conn(*, snapshot: bool = False):
    """
    One transaction per `with` block: commit on clean exit, rollback on error.

    snapshot=True reads everything from a single REPEATABLE READ snapshot
    (queue projection). A lock wait longer than DB_LOCK_TIMEOUT_MS raises
    55P03, which the API reports as a retryable 409.
    """
    if _pool is None:
        init_pool()

    conn = _pool.getconn()
    try:
        with conn.cursor() as cur:
            _session_limits(cur, snapshot=snapshot)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _pool.putconn(conn)
