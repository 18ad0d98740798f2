from __future__ import annotations

from typing import Any

from psycopg2.extras import Json


def create_admin_alert(
    conn,
    *,
    kind: str,
    severity: str,
    message: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.admin_alerts (kind, severity, message, metadata)
            VALUES (%s, %s, %s, %s::jsonb);
            """,
            (
                kind,
                severity,
                message,
                Json(metadata or {}),
            ),
        )
