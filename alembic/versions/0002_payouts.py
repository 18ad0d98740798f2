"""payouts aggregate

Revision ID: 0002_payouts
Revises: 0001_program_schema
Create Date: 2026-02-02 09:30:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_payouts"
down_revision = "0001_program_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payouts (
            id uuid PRIMARY KEY,
            membership_id uuid NOT NULL REFERENCES app.memberships (id),
            user_id uuid NOT NULL,
            amount_cents bigint NOT NULL CHECK (amount_cents > 0),
            currency text NOT NULL,
            status text NOT NULL CHECK (status IN (
              'pending_approval', 'approved', 'rejected', 'scheduled',
              'processing', 'completed', 'payment_failed', 'cancelled'
            )),
            payment_method text NOT NULL CHECK (payment_method IN ('ach', 'check')),
            eligibility_snapshot jsonb NOT NULL,
            approval_workflow jsonb NOT NULL,
            processing jsonb NOT NULL DEFAULT '{}'::jsonb,
            audit_trail jsonb NOT NULL DEFAULT '[]'::jsonb
              CHECK (jsonb_typeof(audit_trail) = 'array'),
            receipt_url text,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    # at most one open payout per membership, even under concurrent selection
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_payouts_open_membership
          ON app.payouts (membership_id)
          WHERE status IN ('pending_approval', 'approved', 'scheduled', 'processing', 'payment_failed');

        CREATE INDEX IF NOT EXISTS ix_payouts_status_created ON app.payouts (status, created_at DESC);
        CREATE INDEX IF NOT EXISTS ix_payouts_user ON app.payouts (user_id, updated_at DESC);
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.payouts;")
