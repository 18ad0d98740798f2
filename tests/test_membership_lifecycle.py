from __future__ import annotations

import pytest

from app.clock import add_months
from app.collaborators.http import CollaboratorRejected
from app.collaborators.notifications import MEMBERSHIP_REACTIVATED, MEMBERSHIP_REMOVED
from app.errors import NotFound, StateConflict, ValidationError
from app.membership.lifecycle import removal_date
from tests.fakes import FakeConn, utc

ADMIN_A = "9a3f0b7e-2d1c-4e5f-8a9b-0c1d2e3f4a01"
ADMIN_B = "9a3f0b7e-2d1c-4e5f-8a9b-0c1d2e3f4a02"
ACTOR = f"admin:{ADMIN_A}"
COMPLETED_AT = utc(2024, 1, 15)


@pytest.fixture()
def paid_member(engine, program):
    """First-ranked member, paid out on 2024-01-15. Returns (membership_id, user_id, payout_id)."""
    payout = engine.winners.create_payout_batch(1, ADMIN_A).created[0]
    for admin in (ADMIN_A, ADMIN_B):
        engine.approvals.submit_decision(payout.id, admin_id=admin, roles=("admin",), approved=True)
    engine.payments.generate_payment_instructions(payout.id, actor=ACTOR)
    engine.payments.mark_payment_sent(payout.id, actor=ACTOR)
    engine.payments.confirm_payment_complete(payout.id, actor=ACTOR, completed_at=COMPLETED_AT)
    mid, uid = program[0]
    return mid, uid, payout.id


def test_removal_date_is_twelve_calendar_months_later():
    assert removal_date(utc(2024, 1, 15)) == utc(2025, 1, 15)
    assert removal_date(utc(2024, 2, 29)) == utc(2025, 2, 28)
    assert add_months(utc(2024, 1, 31), 1) == utc(2024, 2, 29)


def test_completion_schedules_removal(engine, store, paid_member):
    _, _, pid = paid_member
    schedule = store.stored(pid).processing.membership_removal
    assert schedule.scheduled_for == utc(2025, 1, 15)
    assert schedule.removed is False


def test_due_removals_respect_the_schedule(engine, paid_member):
    assert engine.membership.check_due_removals(utc(2024, 6, 1)) == []
    due = engine.membership.check_due_removals(utc(2025, 1, 16))
    assert [d.payout_id for d in due] == [str(paid_member[2])]
    assert due[0].scheduled_for == utc(2025, 1, 15)


def test_rescheduling_same_completion_is_a_no_op(engine, store, paid_member):
    _, uid, pid = paid_member
    before = len(store.stored(pid).audit_trail)

    schedule = engine.membership.schedule_removal(uid, COMPLETED_AT)

    assert schedule.scheduled_for == utc(2025, 1, 15)
    assert len(store.stored(pid).audit_trail) == before


def test_schedule_removal_without_completed_payout(engine, program):
    with pytest.raises(NotFound):
        engine.membership.schedule_removal(program[2][1], COMPLETED_AT)


def test_removal_not_due_yet(engine, clock, paid_member):
    clock.now = utc(2024, 6, 1)
    with pytest.raises(StateConflict) as exc:
        engine.membership.remove_membership(paid_member[1])
    assert exc.value.code == "REMOVAL_NOT_DUE"


def test_remove_membership_cancels_billing_and_notifies(engine, store, billing, notifier, paid_member):
    mid, uid, pid = paid_member

    outcome = engine.membership.remove_membership(uid)

    assert outcome.removed is True
    assert outcome.billing_cancelled is True
    assert billing.cancelled == [uid]
    assert store.memberships[mid]["member_status"] == "inactive"
    stored = store.stored(pid)
    assert stored.processing.membership_removal.removed is True
    assert stored.audit_trail[-1].action == "membership_removed"
    assert notifier.templates()[-1] == MEMBERSHIP_REMOVED


def test_remove_membership_twice_is_idempotent(engine, billing, paid_member):
    uid = paid_member[1]
    engine.membership.remove_membership(uid)
    again = engine.membership.remove_membership(uid)
    assert again.removed is False
    assert again.already_removed is True
    assert billing.cancelled == [uid]


def test_billing_failure_does_not_block_removal(engine, store, billing, paid_member):
    mid, uid, pid = paid_member
    billing.cancel_error = CollaboratorRejected("billing", 404, "subscription not found")

    outcome = engine.membership.remove_membership(uid)

    assert outcome.removed is True
    assert outcome.billing_cancelled is False
    assert store.memberships[mid]["member_status"] == "inactive"
    assert store.stored(pid).audit_trail[-1].details["billing_cancelled"] is False


def test_rescheduling_after_removal_is_refused(engine, paid_member):
    uid = paid_member[1]
    engine.membership.remove_membership(uid)
    with pytest.raises(StateConflict) as exc:
        engine.membership.schedule_removal(uid, utc(2024, 3, 1))
    assert exc.value.code == "ALREADY_REMOVED"


def test_sweep_removes_every_due_membership(engine, clock, paid_member):
    result = engine.membership.run_removal_sweep(utc(2025, 1, 16))
    assert result.due == 1
    assert result.removed == [paid_member[1]]
    assert result.failed == []

    again = engine.membership.run_removal_sweep(utc(2025, 1, 17))
    assert again.due == 0


def test_reactivation_restarts_tenure(engine, store, notifier, clock, paid_member):
    mid, uid, pid = paid_member
    engine.membership.remove_membership(uid)

    clock.now = utc(2025, 7, 1)
    restart = utc(2025, 6, 15)
    out = engine.membership.reactivate_membership(uid, restart, actor=ACTOR)

    assert out["member_status"] == "active"
    assert store.memberships[mid]["member_status"] == "active"
    assert store.memberships[mid]["tenure_started_at"] == restart
    schedule = store.stored(pid).processing.membership_removal
    assert schedule.reactivated_at == clock.now
    assert schedule.new_tenure_start == restart
    assert store.stored(pid).audit_trail[-1].action == "membership_reactivated"
    assert notifier.templates()[-1] == MEMBERSHIP_REACTIVATED

    # back in the queue, behind everyone already waiting, once a new payment lands
    assert engine.projection.position_of(uid) is None
    store.add_payment(uid, utc(2025, 6, 20), 2_500)
    candidate = engine.projection.position_of(uid)
    assert candidate.queue_rank == 3
    assert candidate.has_received_payout is False
    assert candidate.is_eligible is False


def test_reactivation_locks_payout_before_membership(engine, clock, monkeypatch, paid_member):
    engine.membership.remove_membership(paid_member[1])
    clock.now = utc(2025, 7, 1)

    taken = []
    real_lock_row = FakeConn.lock_row

    def recording_lock_row(conn, key):
        taken.append(key[0])
        return real_lock_row(conn, key)

    monkeypatch.setattr(FakeConn, "lock_row", recording_lock_row)
    engine.membership.reactivate_membership(paid_member[1], utc(2025, 6, 15), actor=ACTOR)

    assert taken == ["payout", "membership"]


def test_reactivation_rejects_future_date(engine, paid_member):
    engine.membership.remove_membership(paid_member[1])
    with pytest.raises(ValidationError):
        engine.membership.reactivate_membership(paid_member[1], utc(2030, 1, 1))


def test_only_removed_memberships_can_be_reactivated(engine, paid_member):
    with pytest.raises(StateConflict) as exc:
        engine.membership.reactivate_membership(paid_member[1], utc(2025, 5, 1))
    assert exc.value.code == "MEMBERSHIP_NOT_REMOVED"
    assert exc.value.current_state == "paid"


def test_membership_status_view(engine, program, paid_member):
    status = engine.membership.membership_status(paid_member[1])
    assert status["member_status"] == "paid"
    assert status["queue_rank"] is None
    assert status["last_payout_id"] == str(paid_member[2])
    assert status["removal"]["scheduled_for"] == "2025-01-15T00:00:00+00:00"

    waiting = engine.membership.membership_status(program[1][1])
    assert waiting["queue_rank"] == 1
    assert waiting["is_eligible"] is True


def test_membership_status_unknown_user(engine):
    with pytest.raises(NotFound):
        engine.membership.membership_status("4d4c2a88-0000-4000-8000-000000000000")
