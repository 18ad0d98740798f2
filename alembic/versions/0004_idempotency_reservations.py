"""idempotency keys are reserved before the request runs

Revision ID: 0004_idempotency_reservations
Revises: 0003_audit_alerts_idempotency
Create Date: 2026-03-10 09:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0004_idempotency_reservations"
down_revision = "0003_audit_alerts_idempotency"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # NULL response_json = reserved, request still running
    op.execute("ALTER TABLE app.idempotency_keys ALTER COLUMN response_json DROP NOT NULL;")
    op.execute("ALTER TABLE app.idempotency_keys ADD COLUMN IF NOT EXISTS completed_at timestamptz;")
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_idempotency_keys_pending
        ON app.idempotency_keys (created_at)
        WHERE response_json IS NULL;
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS app.ix_idempotency_keys_pending;")
    op.execute("DELETE FROM app.idempotency_keys WHERE response_json IS NULL;")
    op.execute("ALTER TABLE app.idempotency_keys DROP COLUMN IF EXISTS completed_at;")
    op.execute("ALTER TABLE app.idempotency_keys ALTER COLUMN response_json SET NOT NULL;")
