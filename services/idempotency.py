# services/idempotency.py
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from psycopg2.extras import Json, RealDictCursor

from app.errors import StateConflict

logger = logging.getLogger("tenure.idempotency")


@dataclass(frozen=True)
class StoredResponse:
    body: Any
    status_code: int


def fingerprint(payload: dict[str, Any]) -> str:
    """Stable hash of a request body; key order and whitespace do not matter."""
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def resolve_existing(row: Optional[dict[str, Any]], *, body_hash: str) -> StoredResponse:
    """
    Decide what a request that lost the reservation gets back: the stored
    response, or a 409 when the key is still running or the body differs.
    """
    if row is None:
        # reservation vanished between insert and re-read (released after a failure)
        raise StateConflict("Idempotency-Key is being released, retry", code="IDEMPOTENCY_IN_PROGRESS")
    if row["request_hash"] != body_hash:
        raise StateConflict("Idempotency-Key reused with a different body", code="IDEMPOTENCY_CONFLICT")
    if row["response_json"] is None:
        raise StateConflict(
            "A request with this Idempotency-Key is still running",
            code="IDEMPOTENCY_IN_PROGRESS",
            details={"retryable": True},
        )
    return StoredResponse(body=row["response_json"], status_code=int(row["status_code"]))


class IdempotencyKeys:
    """
    Keys are reserved before any work runs. A reserved row with no response
    marks a request in flight; the PK makes a second reservation lose.
    """

    def reserve(self, conn, *, actor: str, key: str, route_key: str, body_hash: str) -> Optional[StoredResponse]:
        """None means the caller owns the key and must run the request."""
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO app.idempotency_keys (actor, idempotency_key, route_key, request_hash)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (actor, idempotency_key, route_key) DO NOTHING
                RETURNING actor
                """,
                (actor, key, route_key, body_hash),
            )
            if cur.fetchone() is not None:
                return None

            cur.execute(
                """
                SELECT request_hash, response_json, status_code
                FROM app.idempotency_keys
                WHERE actor = %s AND idempotency_key = %s AND route_key = %s
                """,
                (actor, key, route_key),
            )
            row = cur.fetchone()
        return resolve_existing(dict(row) if row else None, body_hash=body_hash)

    def complete(self, conn, *, actor: str, key: str, route_key: str, body: dict[str, Any], status_code: int) -> None:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.idempotency_keys
                SET response_json = %s, status_code = %s, completed_at = now()
                WHERE actor = %s AND idempotency_key = %s AND route_key = %s
                  AND response_json IS NULL
                """,
                (Json(body), int(status_code), actor, key, route_key),
            )
            if cur.rowcount != 1:
                logger.warning("idempotency key not pending on complete actor=%s key=%s", actor, key)

    def release(self, conn, *, actor: str, key: str, route_key: str) -> None:
        with conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM app.idempotency_keys
                WHERE actor = %s AND idempotency_key = %s AND route_key = %s
                  AND response_json IS NULL
                """,
                (actor, key, route_key),
            )
