# app/membership/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from db_exec import db_execute, db_fetchone


class MembershipRepository:
    """
    Memberships are owned by the subscription system. The payout engine only
    updates member_status and tenure_started_at.
    """

    def lock(self, conn, membership_id: str) -> Optional[dict[str, Any]]:
        return db_fetchone(
            conn,
            """
            SELECT id, user_id, member_status, tenure_started_at
            FROM app.memberships
            WHERE id = %s::uuid
            FOR UPDATE
            """,
            (membership_id,),
        )

    def get_by_user(self, conn, user_id: str, *, for_update: bool = False) -> Optional[dict[str, Any]]:
        lock_sql = "FOR UPDATE" if for_update else ""
        return db_fetchone(
            conn,
            f"""
            SELECT id, user_id, member_status, tenure_started_at
            FROM app.memberships
            WHERE user_id = %s::uuid
            ORDER BY created_at DESC
            LIMIT 1
            {lock_sql}
            """,
            (str(user_id),),
        )

    def set_status(self, conn, membership_id: str, status: str) -> None:
        db_execute(
            conn,
            "UPDATE app.memberships SET member_status = %s, updated_at = now() WHERE id = %s::uuid",
            (status, membership_id),
        )

    def restart_tenure(self, conn, membership_id: str, started_at: datetime, status: str) -> None:
        db_execute(
            conn,
            """
            UPDATE app.memberships
            SET member_status = %s, tenure_started_at = %s, updated_at = now()
            WHERE id = %s::uuid
            """,
            (status, started_at, membership_id),
        )


class MemberProfileRepository:
    """Read-only lookups against records owned by KYC, billing and profile services."""

    def kyc_status(self, conn, user_id: str) -> Optional[str]:
        row = db_fetchone(
            conn,
            """
            SELECT status
            FROM app.kyc_verifications
            WHERE user_id = %s::uuid
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (str(user_id),),
        )
        return row["status"] if row else None

    def subscription_status(self, conn, user_id: str) -> Optional[str]:
        row = db_fetchone(
            conn,
            """
            SELECT status
            FROM app.subscriptions
            WHERE user_id = %s::uuid
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (str(user_id),),
        )
        return row["status"] if row else None

    def has_valid_tax_form(self, conn, user_id: str, at: datetime) -> bool:
        row = db_fetchone(
            conn,
            """
            SELECT 1 AS ok
            FROM app.tax_forms
            WHERE user_id = %s::uuid
              AND status = 'valid'
              AND (expires_at IS NULL OR expires_at > %s)
            LIMIT 1
            """,
            (str(user_id), at),
        )
        return row is not None

    def encrypted_bank_details(self, conn, user_id: str) -> Optional[str]:
        row = db_fetchone(
            conn,
            """
            SELECT encrypted_payload
            FROM app.member_bank_details
            WHERE user_id = %s::uuid
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (str(user_id),),
        )
        return row["encrypted_payload"] if row else None

    def primary_address(self, conn, user_id: str) -> Optional[dict[str, Any]]:
        return db_fetchone(
            conn,
            """
            SELECT full_name, line1, line2, city, region, postal_code, country
            FROM app.user_addresses
            WHERE user_id = %s::uuid
              AND is_primary
            LIMIT 1
            """,
            (str(user_id),),
        )

    def preferred_payment_method(self, conn, user_id: str) -> Optional[str]:
        row = db_fetchone(
            conn,
            "SELECT 1 AS ok FROM app.member_bank_details WHERE user_id = %s::uuid LIMIT 1",
            (str(user_id),),
        )
        return "ach" if row else "check"
