"""program source tables (memberships, subscriptions, payments, member profile)

Revision ID: 0001_program_schema
Revises:
Create Date: 2026-02-02 09:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_program_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")

    # Owned by the subscription system; the payout engine only updates
    # member_status and tenure_started_at.
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.memberships (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            member_status text NOT NULL DEFAULT 'active'
              CHECK (member_status IN ('active', 'won', 'paid', 'inactive')),
            tenure_started_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_memberships_user ON app.memberships (user_id, created_at DESC);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.subscriptions (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            status text NOT NULL,
            external_ref text,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_subscriptions_user ON app.subscriptions (user_id, created_at DESC);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payments (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            amount_cents bigint NOT NULL,
            currency text NOT NULL DEFAULT 'USD',
            status text NOT NULL,
            external_ref text,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_payments_user_succeeded
          ON app.payments (user_id, created_at)
          WHERE status = 'succeeded' AND amount_cents > 0;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.kyc_verifications (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            status text NOT NULL,
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_kyc_user ON app.kyc_verifications (user_id, updated_at DESC);

        CREATE TABLE IF NOT EXISTS app.tax_forms (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            form_type text NOT NULL,
            status text NOT NULL,
            expires_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_tax_forms_user ON app.tax_forms (user_id);

        CREATE TABLE IF NOT EXISTS app.member_bank_details (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            encrypted_payload text NOT NULL,
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS ix_bank_details_user ON app.member_bank_details (user_id, updated_at DESC);

        CREATE TABLE IF NOT EXISTS app.user_addresses (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id uuid NOT NULL,
            is_primary boolean NOT NULL DEFAULT false,
            full_name text NOT NULL,
            line1 text NOT NULL,
            line2 text,
            city text NOT NULL,
            region text,
            postal_code text NOT NULL,
            country text NOT NULL DEFAULT 'US'
        );
        CREATE UNIQUE INDEX IF NOT EXISTS ux_user_addresses_primary
          ON app.user_addresses (user_id) WHERE is_primary;
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.user_addresses;")
    op.execute("DROP TABLE IF EXISTS app.member_bank_details;")
    op.execute("DROP TABLE IF EXISTS app.tax_forms;")
    op.execute("DROP TABLE IF EXISTS app.kyc_verifications;")
    op.execute("DROP TABLE IF EXISTS app.payments;")
    op.execute("DROP TABLE IF EXISTS app.subscriptions;")
    op.execute("DROP TABLE IF EXISTS app.memberships;")
