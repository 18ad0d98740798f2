# app/payouts/service.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from app.errors import NotFound, StateConflict, ValidationError
from app.payouts.model import Payout
from app.payouts.state_machine import ALL_STATUSES, InvalidTransition, assert_transition


def parse_payout_id(value) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError("payout id must be a UUID", code="INVALID_PAYOUT_ID")


def move(payout: Payout, new_status: str, at: datetime) -> str:
    """Apply a status transition in memory; returns the previous status."""
    old = payout.status
    try:
        assert_transition(old, new_status)
    except InvalidTransition as e:
        raise StateConflict(
            f"Payout cannot move from {old} to {new_status}",
            code="INVALID_STATE",
            current_state=old,
        ) from e
    payout.status = new_status
    payout.updated_at = at
    return old


def lock_or_404(payouts, conn, payout_id: UUID) -> Payout:
    payout = payouts.lock(conn, payout_id)
    if payout is None:
        raise NotFound(f"Payout {payout_id} not found", code="NOT_FOUND")
    return payout


class PayoutQueries:
    def __init__(self, *, connect, payouts):
        self._connect = connect
        self._payouts = payouts

    def get(self, payout_id) -> Payout:
        pid = parse_payout_id(payout_id)
        with self._connect() as conn:
            payout = self._payouts.get(conn, pid)
        if payout is None:
            raise NotFound(f"Payout {pid} not found", code="NOT_FOUND")
        return payout

    def list_payouts(
        self,
        *,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payout]:
        if status is not None and status not in ALL_STATUSES:
            raise ValidationError(f"unknown payout status {status!r}", code="INVALID_STATUS")
        if not 1 <= limit <= 200:
            raise ValidationError("limit must be between 1 and 200", code="INVALID_LIMIT")
        if offset < 0:
            raise ValidationError("offset must be >= 0", code="INVALID_OFFSET")
        with self._connect() as conn:
            return self._payouts.list_payouts(conn, status=status, user_id=user_id, limit=limit, offset=offset)


def get_or_404(payouts, conn, payout_id: UUID) -> Payout:
    payout = payouts.get(conn, payout_id)
    if payout is None:
        raise NotFound(f"Payout {payout_id} not found", code="NOT_FOUND")
    return payout
