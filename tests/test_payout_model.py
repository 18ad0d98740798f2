from __future__ import annotations

import uuid

import pytest

from app.payouts.model import (
    ApprovalWorkflow,
    MembershipRemovalSchedule,
    Payout,
    PayoutEligibilitySnapshot,
    ProcessingRecord,
    UnsupportedSchemaVersion,
)
from app.payouts.repository import AuditTrailRewrite, PayoutRepository, payout_from_row
from app.payouts.service import parse_payout_id
from app.errors import ValidationError
from tests.fakes import utc

T0 = utc(2025, 6, 1)


def _payout() -> Payout:
    p = Payout(
        id=uuid.uuid4(),
        membership_id="m-1",
        user_id="u-1",
        amount_cents=10_000_000,
        currency="USD",
        status="pending_approval",
        payment_method="check",
        eligibility_snapshot=PayoutEligibilitySnapshot(
            queue_rank=1,
            membership_id="m-1",
            tenure_started_at=utc(2024, 1, 10),
            last_payment_at=utc(2025, 5, 10),
            successful_payments=17,
            lifetime_total_cents=42_500,
            subscription_status="active",
            compliance_verified=True,
            has_active_subscription=True,
            captured_at=T0,
        ),
        approval_workflow=ApprovalWorkflow(required_approvals=2, created_at=T0),
        processing=ProcessingRecord(),
        audit_trail=[],
        created_at=T0,
        updated_at=T0,
    )
    p.append_audit("payout_created", "admin:a", T0, queue_rank=1)
    return p


def test_row_with_jsonb_columns_loads():
    p = _payout()
    row = p.to_dict()
    row["created_at"] = p.created_at
    row["updated_at"] = p.updated_at

    loaded = payout_from_row(row)

    assert loaded.eligibility_snapshot == p.eligibility_snapshot
    assert loaded.approval_workflow == p.approval_workflow
    assert loaded.audit_trail == p.audit_trail
    assert loaded.processing == ProcessingRecord()


def test_unknown_schema_version_is_refused():
    payload = ApprovalWorkflow(required_approvals=1).to_dict()
    payload["schema_version"] = 2
    with pytest.raises(UnsupportedSchemaVersion):
        ApprovalWorkflow.from_dict(payload)


def test_removal_schedule_round_trip_keeps_flags():
    s = MembershipRemovalSchedule(
        scheduled_for=utc(2025, 1, 15),
        scheduled_at=utc(2024, 1, 15),
        reason="tenure_reset_after_payout",
        removed=True,
        removed_at=utc(2025, 1, 16),
    )
    assert MembershipRemovalSchedule.from_dict(s.to_dict()) == s


def test_copy_does_not_share_audit_trail():
    p = _payout()
    previous = p.copy()
    p.append_audit("approval_submitted", "admin:b", T0)
    assert len(previous.audit_trail) == 1
    assert len(p.audit_trail) == 2


def test_save_refuses_rewritten_audit_trail():
    p = _payout()
    previous = p.copy()
    p.audit_trail[0] = p.audit_trail[0].__class__("payout_created", "admin:forged", T0, {})
    with pytest.raises(AuditTrailRewrite):
        # refused before any SQL is issued
        PayoutRepository().save(None, p, previous=previous)


def test_save_refuses_dropped_entries():
    p = _payout()
    previous = p.copy()
    p.audit_trail.clear()
    with pytest.raises(AuditTrailRewrite):
        PayoutRepository().save(None, p, previous=previous)


def test_parse_payout_id():
    pid = uuid.uuid4()
    assert parse_payout_id(str(pid)) == pid
    with pytest.raises(ValidationError):
        parse_payout_id("not-a-uuid")
