"""audit log, admin alerts, idempotency keys

Revision ID: 0003_audit_alerts_idempotency
Revises: 0002_payouts
Create Date: 2026-02-03 10:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0003_audit_alerts_idempotency"
down_revision = "0002_payouts"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.audit_log (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            actor text NOT NULL,
            action text NOT NULL,
            target_id text,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            request_id text,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_audit_log_action_created ON app.audit_log (action, created_at DESC);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.admin_alerts (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            kind text NOT NULL,
            severity text NOT NULL DEFAULT 'info',
            message text NOT NULL,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            acknowledged_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.idempotency_keys (
            actor text NOT NULL,
            idempotency_key text NOT NULL,
            route_key text NOT NULL,
            request_hash text NOT NULL,
            response_json jsonb NOT NULL,
            status_code int NOT NULL DEFAULT 200,
            created_at timestamptz NOT NULL DEFAULT now(),
            PRIMARY KEY (actor, idempotency_key, route_key)
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.idempotency_keys;")
    op.execute("DROP TABLE IF EXISTS app.admin_alerts;")
    op.execute("DROP TABLE IF EXISTS app.audit_log;")
