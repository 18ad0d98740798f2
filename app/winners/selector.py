# app/winners/selector.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import psycopg2

from app.approvals.workflow import ApprovalPolicy, new_workflow
from app.clock import utcnow
from app.errors import StateConflict, ValidationError
from app.payouts.model import (
    Payout,
    PayoutEligibilitySnapshot,
    ProcessingRecord,
    actor_for,
)
from app.payouts.service import lock_or_404, move, parse_payout_id
from app.payouts.state_machine import CANCELLABLE, CANCELLED, PENDING_APPROVAL
from app.queue.ranking import MEMBER_ACTIVE, Candidate, is_active_subscription

logger = logging.getLogger("tenure.winners")

KYC_VERIFIED = "verified"
MEMBER_WON = "won"

VALIDATION_FAILED = "VALIDATION_FAILED"
ALREADY_SELECTED = "ALREADY_SELECTED"
PERSIST_FAILED = "PERSIST_FAILED"
FUNDING_EXHAUSTED = "FUNDING_EXHAUSTED"


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    compliance_verified: bool
    has_active_subscription: bool
    errors: tuple[str, ...] = ()
    subscription_status: Optional[str] = None


@dataclass(frozen=True)
class FailedRecord:
    user_id: str
    membership_id: str
    reason: str
    message: str
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "membership_id": self.membership_id,
            "reason": self.reason,
            "message": self.message,
            "errors": list(self.errors),
        }


@dataclass
class BatchResult:
    created: list[Payout] = field(default_factory=list)
    failed: list[FailedRecord] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class _SkipWinner(Exception):
    def __init__(self, reason: str, message: str, errors: Iterable[str] = ()):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.errors = tuple(errors)


class WinnerSelector:
    def __init__(
        self,
        *,
        connect,
        projection,
        evaluator,
        payouts,
        memberships,
        profiles,
        policy: ApprovalPolicy,
        payout_amount_cents: int,
        currency: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._connect = connect
        self._projection = projection
        self._evaluator = evaluator
        self._payouts = payouts
        self._memberships = memberships
        self._profiles = profiles
        self._policy = policy
        self._amount_cents = payout_amount_cents
        self._currency = currency
        self._clock = clock

    def select_winners(self, count: int) -> list[Candidate]:
        if count < 1:
            raise ValidationError("count must be at least 1", code="INVALID_COUNT")
        return self._projection.eligible_unpaid(count)

    def validate(self, user_id: str, *, conn=None) -> ValidationResult:
        if conn is None:
            with self._connect() as own:
                return self._validate(own, user_id)
        return self._validate(conn, user_id)

    def _validate(self, conn, user_id: str) -> ValidationResult:
        errors: list[str] = []

        kyc = self._profiles.kyc_status(conn, user_id)
        compliance_ok = (kyc or "").lower() == KYC_VERIFIED
        if not compliance_ok:
            errors.append(f"compliance verification is {kyc or 'missing'}, must be {KYC_VERIFIED}")

        sub = self._profiles.subscription_status(conn, user_id)
        sub_ok = is_active_subscription(sub)
        if not sub_ok:
            errors.append(f"subscription is {sub or 'missing'}, must be active or trialing")

        return ValidationResult(
            is_valid=not errors,
            compliance_verified=compliance_ok,
            has_active_subscription=sub_ok,
            errors=tuple(errors),
            subscription_status=sub,
        )

    def create_payout_records(
        self,
        winners: Iterable[Candidate],
        initiator: str,
        *,
        notes: Optional[str] = None,
        program: Optional[dict[str, Any]] = None,
        capacity: Optional[int] = None,
    ) -> BatchResult:
        """
        One transaction per winner. A failing winner is recorded in
        `failed` and never aborts the rest of the batch.

        `capacity` caps the number of funded payouts (open or completed)
        program revenue covers; it is re-checked under the funding lock for
        every winner, so concurrent batches cannot overshoot it.
        """
        result = BatchResult()
        for winner in winners:
            try:
                with self._connect() as conn:
                    payout = self._create_one(conn, winner, initiator, notes, program, capacity)
            except _SkipWinner as skip:
                logger.info(
                    "winner skipped user_id=%s membership_id=%s reason=%s",
                    winner.user_id,
                    winner.membership_id,
                    skip.reason,
                )
                result.failed.append(
                    FailedRecord(winner.user_id, winner.membership_id, skip.reason, skip.message, skip.errors)
                )
                continue
            except psycopg2.Error as e:
                logger.error(
                    "payout persist failed user_id=%s membership_id=%s err=%s",
                    winner.user_id,
                    winner.membership_id,
                    e,
                )
                result.failed.append(
                    FailedRecord(winner.user_id, winner.membership_id, PERSIST_FAILED, "Payout could not be saved")
                )
                continue

            result.created.append(payout)

        logger.info(
            "payout batch done initiator=%s created=%s failed=%s",
            initiator,
            result.created_count,
            result.failed_count,
        )
        return result

    def _create_one(self, conn, winner: Candidate, initiator: str, notes, program, capacity) -> Payout:
        if capacity is not None:
            self._payouts.lock_funding(conn)
            if self._payouts.count_funded(conn) >= capacity:
                raise _SkipWinner(FUNDING_EXHAUSTED, f"Program revenue covers {capacity} payout(s), all already funded")

        member = self._memberships.lock(conn, winner.membership_id)
        if member is None:
            raise _SkipWinner(ALREADY_SELECTED, "Membership no longer exists")
        if member["member_status"] != MEMBER_ACTIVE:
            raise _SkipWinner(ALREADY_SELECTED, f"Membership status is {member['member_status']}")
        if self._payouts.has_open_payout(conn, winner.membership_id):
            raise _SkipWinner(ALREADY_SELECTED, "Membership already has an open payout")

        check = self._validate(conn, winner.user_id)
        if not check.is_valid:
            raise _SkipWinner(VALIDATION_FAILED, "; ".join(check.errors), check.errors)

        now = self._clock()
        required = self._policy.required_for(self._amount_cents)
        payout = Payout(
            id=uuid.uuid4(),
            membership_id=winner.membership_id,
            user_id=winner.user_id,
            amount_cents=self._amount_cents,
            currency=self._currency,
            status=PENDING_APPROVAL,
            payment_method=self._profiles.preferred_payment_method(conn, winner.user_id),
            eligibility_snapshot=PayoutEligibilitySnapshot(
                queue_rank=winner.queue_rank,
                membership_id=winner.membership_id,
                tenure_started_at=winner.tenure_started_at,
                last_payment_at=winner.last_payment_at,
                successful_payments=winner.successful_payments,
                lifetime_total_cents=winner.lifetime_total_cents,
                subscription_status=check.subscription_status or winner.subscription_status,
                compliance_verified=check.compliance_verified,
                has_active_subscription=check.has_active_subscription,
                captured_at=now,
                program=program,
            ),
            approval_workflow=new_workflow(required, now),
            processing=ProcessingRecord(),
            audit_trail=[],
            created_at=now,
            updated_at=now,
        )
        payout.append_audit(
            "payout_created",
            actor_for(initiator),
            now,
            queue_rank=winner.queue_rank,
            amount_cents=self._amount_cents,
            required_approvals=required,
            notes=notes,
        )

        self._payouts.insert(conn, payout)
        self._memberships.set_status(conn, winner.membership_id, MEMBER_WON)
        return payout

    def create_payout_batch(self, count: int, initiator: str, *, notes: Optional[str] = None) -> BatchResult:
        if count < 1:
            raise ValidationError("count must be at least 1", code="INVALID_COUNT")

        snapshot = self._evaluator.check()
        if not snapshot.is_eligible:
            raise StateConflict(
                f"Program is not eligible for payouts: {snapshot.reason}",
                code="PROGRAM_NOT_ELIGIBLE",
                details={"eligibility": snapshot.to_dict()},
            )

        with self._connect() as conn:
            funded = self._payouts.count_funded(conn)
        available = max(0, snapshot.potential_winners - funded)
        if count > available:
            raise ValidationError(
                f"count {count} exceeds the {available} unfunded winner(s) revenue supports",
                code="EXCEEDS_POTENTIAL_WINNERS",
                details={
                    "potential_winners": snapshot.potential_winners,
                    "funded_payouts": funded,
                    "available": available,
                },
            )

        winners = self.select_winners(count)
        return self.create_payout_records(
            winners,
            initiator,
            notes=notes,
            program=snapshot.to_dict(),
            capacity=snapshot.potential_winners,
        )

    def cancel_payout(self, payout_id, *, actor: str, reason: str) -> Payout:
        """
        Release a selected winner before money moves. The member goes back to
        `active` and re-enters the queue at its tenure rank.
        """
        pid = parse_payout_id(payout_id)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to cancel a payout", code="REASON_REQUIRED")

        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            if payout.status not in CANCELLABLE:
                raise StateConflict(
                    f"A {payout.status} payout cannot be cancelled",
                    code="INVALID_STATE",
                    current_state=payout.status,
                )
            member = self._memberships.lock(conn, payout.membership_id)

            previous = payout.copy()
            now = self._clock()
            old = move(payout, CANCELLED, now)
            payout.append_audit("payout_cancelled", actor, now, reason=reason, previous_status=old)
            self._payouts.save(conn, payout, previous=previous)
            if member is not None and member["member_status"] == MEMBER_WON:
                self._memberships.set_status(conn, payout.membership_id, MEMBER_ACTIVE)

        logger.info("payout cancelled payout_id=%s previous_status=%s actor=%s", pid, old, actor)
        return payout
