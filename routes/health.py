from __future__ import annotations

import logging
import os

import psycopg2
from fastapi import APIRouter, Request

from db import get_conn

logger = logging.getLogger("tenure.routes.health")
router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0004_idempotency_reservations"


def _migration_head() -> tuple[str | None, str | None]:
    """(applied alembic revision, error) for /readyz."""
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version');")
                if cur.fetchone()[0] is None:
                    return None, "alembic_version table missing"
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
        return (row[0] if row else None), None
    except psycopg2.Error as exc:
        logger.warning("readiness db check failed err=%s", exc)
        return None, f"{type(exc).__name__}: {exc}"


@router.get("/health")
def health(request: Request):
    return {
        "ok": True,
        "env": (os.getenv("ENVIRONMENT") or "").strip(),
        "git_sha": (os.getenv("GIT_SHA") or "").strip() or None,
        "engine_ready": getattr(request.app.state, "engine", None) is not None,
    }


@router.get("/readyz")
def readyz(request: Request):
    applied, db_error = _migration_head()
    engine_ready = getattr(request.app.state, "engine", None) is not None
    return {
        "ready": bool(engine_ready and db_error is None and applied == MIGRATION_REVISION),
        "engine_ready": engine_ready,
        "db_ok": db_error is None,
        "db_error": db_error,
        "migration_revision": applied,
        "expected_revision": MIGRATION_REVISION,
    }
