# app/payouts/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from psycopg2.extras import Json, RealDictCursor

from app.payouts.model import (
    ApprovalWorkflow,
    AuditEntry,
    Payout,
    PayoutEligibilitySnapshot,
    ProcessingRecord,
)
from app.payouts.state_machine import FUNDED_STATUSES, OPEN_STATUSES

# pg_advisory_xact_lock key serializing payout creation
FUNDING_LOCK_KEY = 7_410_001

_COLUMNS = """
  id, membership_id, user_id, amount_cents, currency, status, payment_method,
  eligibility_snapshot, approval_workflow, processing, audit_trail,
  receipt_url, created_at, updated_at
"""


class AuditTrailRewrite(Exception):
    """Raised when a save would drop or reorder existing audit entries."""


def payout_from_row(row: dict[str, Any]) -> Payout:
    return Payout(
        id=row["id"] if isinstance(row["id"], UUID) else UUID(str(row["id"])),
        membership_id=str(row["membership_id"]),
        user_id=str(row["user_id"]),
        amount_cents=int(row["amount_cents"]),
        currency=row["currency"],
        status=row["status"],
        payment_method=row["payment_method"],
        eligibility_snapshot=PayoutEligibilitySnapshot.from_dict(row["eligibility_snapshot"]),
        approval_workflow=ApprovalWorkflow.from_dict(row["approval_workflow"]),
        processing=ProcessingRecord.from_dict(row.get("processing")),
        audit_trail=[AuditEntry.from_dict(e) for e in row.get("audit_trail") or []],
        receipt_url=row.get("receipt_url"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PayoutRepository:
    # ==========================================================
    # Writes
    # ==========================================================

    def insert(self, conn, payout: Payout) -> None:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO app.payouts (
                  id, membership_id, user_id, amount_cents, currency, status, payment_method,
                  eligibility_snapshot, approval_workflow, processing, audit_trail,
                  receipt_url, created_at, updated_at
                )
                VALUES (%s, %s::uuid, %s::uuid, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s::jsonb, %s::jsonb, %s, %s, %s)
                """,
                (
                    payout.id,
                    payout.membership_id,
                    payout.user_id,
                    payout.amount_cents,
                    payout.currency,
                    payout.status,
                    payout.payment_method,
                    Json(payout.eligibility_snapshot.to_dict()),
                    Json(payout.approval_workflow.to_dict()),
                    Json(payout.processing.to_dict()),
                    Json([e.to_dict() for e in payout.audit_trail]),
                    payout.receipt_url,
                    payout.created_at,
                    payout.updated_at,
                ),
            )

    def save(self, conn, payout: Payout, *, previous: Payout) -> None:
        """
        Persist a transition of a payout previously returned by lock().

        The eligibility snapshot is never written here, and the audit trail may
        only grow: `previous.audit_trail` must be a prefix of the new one.
        """
        old_len = len(previous.audit_trail)
        if payout.audit_trail[:old_len] != previous.audit_trail:
            raise AuditTrailRewrite(f"audit trail of payout {payout.id} would be rewritten")

        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.payouts
                SET
                  status = %s,
                  approval_workflow = %s::jsonb,
                  processing = %s::jsonb,
                  audit_trail = %s::jsonb,
                  receipt_url = %s,
                  updated_at = %s
                WHERE id = %s
                  AND jsonb_array_length(audit_trail) = %s
                """,
                (
                    payout.status,
                    Json(payout.approval_workflow.to_dict()),
                    Json(payout.processing.to_dict()),
                    Json([e.to_dict() for e in payout.audit_trail]),
                    payout.receipt_url,
                    payout.updated_at,
                    payout.id,
                    old_len,
                ),
            )
            if cur.rowcount != 1:
                raise AuditTrailRewrite(f"payout {payout.id} changed concurrently")

    # ==========================================================
    # Reads
    # ==========================================================

    def get(self, conn, payout_id: UUID) -> Optional[Payout]:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM app.payouts WHERE id = %s", (payout_id,))
            row = cur.fetchone()
        return payout_from_row(dict(row)) if row else None

    def lock(self, conn, payout_id: UUID) -> Optional[Payout]:
        """SELECT ... FOR UPDATE. Held until the caller's transaction ends."""
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM app.payouts WHERE id = %s FOR UPDATE", (payout_id,))
            row = cur.fetchone()
        return payout_from_row(dict(row)) if row else None

    def list_payouts(
        self,
        conn,
        *,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payout]:
        where = []
        params: list[Any] = []
        if status:
            where.append("status = %s")
            params.append(status)
        if user_id:
            where.append("user_id = %s::uuid")
            params.append(str(user_id))
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        params.extend([limit, offset])

        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM app.payouts
                {where_sql}
                ORDER BY created_at DESC, id
                LIMIT %s OFFSET %s
                """,
                tuple(params),
            )
            rows = cur.fetchall()
        return [payout_from_row(dict(r)) for r in rows]

    def lock_funding(self, conn) -> None:
        """Held until commit; concurrent batches take turns creating payouts."""
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(%s);", (FUNDING_LOCK_KEY,))

    def count_funded(self, conn) -> int:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT count(*) FROM app.payouts WHERE status = ANY(%s);",
                (sorted(FUNDED_STATUSES),),
            )
            return int(cur.fetchone()[0])

    def has_open_payout(self, conn, membership_id: str) -> bool:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1
                FROM app.payouts
                WHERE membership_id = %s::uuid
                  AND status = ANY(%s)
                LIMIT 1
                """,
                (membership_id, sorted(OPEN_STATUSES)),
            )
            return cur.fetchone() is not None

    def due_removals(self, conn, now: datetime) -> list[Payout]:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM app.payouts
                WHERE status = 'completed'
                  AND processing->'membership_removal' IS NOT NULL
                  AND jsonb_typeof(processing->'membership_removal') = 'object'
                  AND (processing->'membership_removal'->>'scheduled_for')::timestamptz <= %s
                  AND COALESCE((processing->'membership_removal'->>'removed')::boolean, false) = false
                ORDER BY (processing->'membership_removal'->>'scheduled_for')::timestamptz, id
                """,
                (now,),
            )
            rows = cur.fetchall()
        return [payout_from_row(dict(r)) for r in rows]

    def latest_completed_for_user(self, conn, user_id: str, *, for_update: bool = False) -> Optional[Payout]:
        lock_sql = "FOR UPDATE" if for_update else ""
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM app.payouts
                WHERE user_id = %s::uuid
                  AND status = 'completed'
                ORDER BY updated_at DESC, id
                LIMIT 1
                {lock_sql}
                """,
                (str(user_id),),
            )
            row = cur.fetchone()
        return payout_from_row(dict(row)) if row else None
