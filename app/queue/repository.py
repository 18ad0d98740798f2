# app/queue/repository.py
from __future__ import annotations

from psycopg2.extras import RealDictCursor

from app.queue.ranking import MemberFacts


class QueueRepository:
    """
    Reads the raw facts the ranking is computed from.

    Callers are expected to run this inside a REPEATABLE READ transaction
    (get_conn(snapshot=True)) so memberships, subscriptions, payments and
    payouts are read from one snapshot.
    """

    def load_member_facts(self, conn) -> list[MemberFacts]:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                WITH latest_sub AS (
                  SELECT DISTINCT ON (s.user_id) s.user_id, s.status
                  FROM app.subscriptions s
                  ORDER BY s.user_id, s.created_at DESC
                ),
                qualifying AS (
                  SELECT
                    m.id AS membership_id,
                    min(p.created_at) AS first_at,
                    max(p.created_at) AS last_at,
                    count(*) AS n,
                    COALESCE(sum(p.amount_cents), 0) AS total_cents
                  FROM app.memberships m
                  JOIN app.payments p ON p.user_id = m.user_id
                  WHERE p.status = 'succeeded'
                    AND p.amount_cents > 0
                    AND (m.tenure_started_at IS NULL OR p.created_at >= m.tenure_started_at)
                  GROUP BY m.id
                ),
                paid AS (
                  SELECT DISTINCT po.membership_id
                  FROM app.payouts po
                  JOIN app.memberships m ON m.id = po.membership_id
                  WHERE po.status = 'completed'
                    AND (m.tenure_started_at IS NULL OR po.created_at >= m.tenure_started_at)
                )
                SELECT
                  m.id AS membership_id,
                  m.user_id,
                  m.member_status,
                  m.tenure_started_at,
                  ls.status AS subscription_status,
                  q.first_at,
                  q.last_at,
                  COALESCE(q.n, 0) AS n,
                  COALESCE(q.total_cents, 0) AS total_cents,
                  (paid.membership_id IS NOT NULL) AS has_received_payout
                FROM app.memberships m
                LEFT JOIN latest_sub ls ON ls.user_id = m.user_id
                LEFT JOIN qualifying q ON q.membership_id = m.id
                LEFT JOIN paid ON paid.membership_id = m.id
                """
            )
            rows = cur.fetchall()

        return [
            MemberFacts(
                membership_id=str(r["membership_id"]),
                user_id=str(r["user_id"]),
                member_status=r["member_status"],
                subscription_status=r["subscription_status"],
                first_qualifying_payment_at=r["first_at"],
                last_payment_at=r["last_at"],
                successful_payments=int(r["n"]),
                lifetime_total_cents=int(r["total_cents"]),
                has_received_payout=bool(r["has_received_payout"]),
                tenure_started_at=r["tenure_started_at"],
            )
            for r in rows
        ]

    def local_revenue_cents(self, conn) -> int:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COALESCE(sum(amount_cents), 0)
                FROM app.payments
                WHERE status = 'succeeded'
                """
            )
            return int(cur.fetchone()[0])
