from __future__ import annotations

from typing import Any
from psycopg2.extras import Json

from services.observability import get_request_id
from services.redaction import redact_dict


def write_audit_log(
    conn,
    *,
    actor: str,
    action: str,
    target_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """
    Program-level audit log (eligibility checks, sweeps). Payout transitions
    are recorded on the payout's own audit trail instead.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.audit_log (actor, action, target_id, metadata, request_id)
            VALUES (%s, %s, %s, %s::jsonb, %s);
            """,
            (
                actor,
                action,
                target_id,
                Json(redact_dict(metadata or {})),
                get_request_id(),
            ),
        )
