import pytest

from app.payouts.state_machine import (
    ALL_STATUSES,
    TERMINAL,
    InvalidTransition,
    assert_transition,
    can_transition,
    is_terminal,
)


def test_valid_transitions():
    assert_transition("pending_approval", "approved")
    assert_transition("pending_approval", "rejected")
    assert_transition("approved", "processing")
    assert_transition("approved", "scheduled")
    assert_transition("scheduled", "processing")
    assert_transition("processing", "completed")
    assert_transition("processing", "payment_failed")
    assert_transition("payment_failed", "approved")


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransition):
        assert_transition("pending_approval", "processing")
    with pytest.raises(InvalidTransition):
        assert_transition("approved", "completed")


def test_terminal_states_cannot_transition():
    assert TERMINAL == {"completed", "rejected", "cancelled"}
    for status in TERMINAL:
        assert is_terminal(status)
        for target in ALL_STATUSES:
            assert not can_transition(status, target)


def test_failed_payment_only_returns_through_retry():
    assert not can_transition("payment_failed", "processing")
    assert not can_transition("payment_failed", "completed")
    assert can_transition("payment_failed", "approved")


def test_unknown_status_is_rejected():
    with pytest.raises(InvalidTransition):
        assert_transition("SENT", "approved")
