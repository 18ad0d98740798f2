# app/payments/processor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import psycopg2

from app.clock import utcnow
from app.collaborators.base import DocumentRenderer, NotificationSender
from app.collaborators.documents import PAYMENT_INSTRUCTIONS_TEMPLATE, RECEIPT_TEMPLATE
from app.collaborators.http import CollaboratorRejected, CollaboratorUnavailable
from app.collaborators.notifications import PAYOUT_COMPLETED
from app.errors import DependencyFailure, PaymentPrerequisiteError, StateConflict, ValidationError
from app.membership.lifecycle import MEMBER_PAID
from app.payments.bank_details import BankDetailsUnavailable
from app.payments.calculator import PayoutCalculation, calculate_net_payout
from app.payouts.model import (
    SYSTEM_ACTOR,
    CompletionDetails,
    InstructionsRecord,
    Payout,
    PaymentFailure,
    TransitDetails,
)
from app.payouts.service import get_or_404, lock_or_404, move, parse_payout_id
from app.payouts.state_machine import (
    APPROVED,
    COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_STATES,
    PROCESSING,
    SCHEDULED,
)

logger = logging.getLogger("tenure.payments")

METHOD_ACH = "ach"
METHOD_CHECK = "check"


@dataclass(frozen=True)
class PaymentConfig:
    retention_fee_cents: int
    tax_rate: Decimal

    @classmethod
    def from_settings(cls, s) -> "PaymentConfig":
        return cls(retention_fee_cents=s.RETENTION_FEE_CENTS, tax_rate=Decimal(s.TAX_WITHHOLDING_RATE))


class PaymentProcessor:
    def __init__(
        self,
        *,
        connect,
        payouts,
        memberships,
        profiles,
        documents: DocumentRenderer,
        notifier: NotificationSender,
        lifecycle,
        cipher_factory: Callable[[], Any],
        config: PaymentConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._connect = connect
        self._payouts = payouts
        self._memberships = memberships
        self._profiles = profiles
        self._documents = documents
        self._notifier = notifier
        self._lifecycle = lifecycle
        self._cipher_factory = cipher_factory
        self.config = config
        self._clock = clock

    def calculate_net_payout(self, has_valid_tax_form: bool, *, gross_cents: int) -> PayoutCalculation:
        return calculate_net_payout(
            has_valid_tax_form,
            gross_cents=gross_cents,
            retention_fee_cents=self.config.retention_fee_cents,
            tax_rate=self.config.tax_rate,
        )

    # ==========================================================
    # Instructions
    # ==========================================================

    def _payment_target(self, conn, payout: Payout) -> dict[str, Any]:
        if payout.payment_method == METHOD_ACH:
            sealed = self._profiles.encrypted_bank_details(conn, payout.user_id)
            if not sealed:
                raise PaymentPrerequisiteError("No bank details on file for ACH payment", code="BANK_DETAILS_MISSING")
            try:
                details = self._cipher_factory().decrypt(sealed)
            except BankDetailsUnavailable as e:
                raise PaymentPrerequisiteError(str(e), code="BANK_DETAILS_UNREADABLE") from e
            return {
                "account_holder": details.account_holder,
                "bank_name": details.bank_name,
                "routing_number": details.routing_number,
                "account_number": details.account_number,
                "account_type": details.account_type,
            }

        if payout.payment_method == METHOD_CHECK:
            address = self._profiles.primary_address(conn, payout.user_id)
            if not address:
                raise PaymentPrerequisiteError("No primary mailing address on file for check payment", code="MAILING_ADDRESS_MISSING")
            return {"mailing_address": address}

        raise ValidationError(f"unsupported payment method {payout.payment_method!r}", code="INVALID_PAYMENT_METHOD")

    def generate_payment_instructions(self, payout_id, *, actor: str) -> Payout:
        pid = parse_payout_id(payout_id)

        # read phase: no row lock is held while the document service renders
        try:
            with self._connect() as conn:
                payout = get_or_404(self._payouts, conn, pid)
                if payout.status != APPROVED:
                    raise StateConflict(
                        "Payment instructions require an approved payout",
                        code="INVALID_STATE",
                        current_state=payout.status,
                    )
                has_tax_form = self._profiles.has_valid_tax_form(conn, payout.user_id, self._clock())
                target = self._payment_target(conn, payout)
        except psycopg2.OperationalError as e:
            raise DependencyFailure("Member payment details are temporarily unavailable", code="LOOKUP_UNAVAILABLE") from e

        calc = self.calculate_net_payout(has_tax_form, gross_cents=payout.amount_cents)

        document_url = None
        document_error = None
        try:
            document_url = self._documents.render(
                PAYMENT_INSTRUCTIONS_TEMPLATE,
                {
                    "payout_id": str(payout.id),
                    "user_id": payout.user_id,
                    "payment_method": payout.payment_method,
                    "currency": payout.currency,
                    "calculation": calc.to_dict(),
                    **target,
                },
            )
        except (CollaboratorUnavailable, CollaboratorRejected) as e:
            document_error = str(e)
            logger.warning("instructions document render failed payout_id=%s err=%s", payout.id, e)

        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            if payout.status != APPROVED:
                raise StateConflict(
                    "Payment instructions require an approved payout",
                    code="INVALID_STATE",
                    current_state=payout.status,
                )
            previous = payout.copy()
            now = self._clock()
            payout.update_processing(
                calculation=calc,
                instructions=InstructionsRecord(
                    payment_method=payout.payment_method,
                    net_amount_cents=calc.net_cents,
                    generated_at=now,
                    generated_by=actor,
                    document_url=document_url,
                    document_error=document_error,
                ),
            )
            payout.append_audit(
                "payment_instructions_generated",
                actor,
                now,
                payment_method=payout.payment_method,
                net_amount_cents=calc.net_cents,
                tax_withheld_cents=calc.tax_withholding_cents,
                document_url=document_url,
            )
            payout.updated_at = now
            self._payouts.save(conn, payout, previous=previous)

        logger.info("payment instructions generated payout_id=%s net_cents=%s document=%s", pid, calc.net_cents, bool(document_url))
        return payout

    # ==========================================================
    # Transit / completion / failure
    # ==========================================================

    def mark_payment_sent(
        self,
        payout_id,
        *,
        actor: str,
        sent_at: Optional[datetime] = None,
        expected_arrival_at: Optional[datetime] = None,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payout:
        pid = parse_payout_id(payout_id)
        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            if payout.status not in (APPROVED, SCHEDULED):
                raise StateConflict(
                    "Only approved or scheduled payouts can be marked as sent",
                    code="INVALID_STATE",
                    current_state=payout.status,
                )
            if payout.processing.instructions is None:
                raise StateConflict(
                    "Payment instructions must be generated before the payment is sent",
                    code="INSTRUCTIONS_REQUIRED",
                    current_state=payout.status,
                )

            previous = payout.copy()
            now = self._clock()
            sent = sent_at or now
            if expected_arrival_at is not None and expected_arrival_at < sent:
                raise ValidationError("expected_arrival_at cannot be before sent_at", code="INVALID_DATE")

            move(payout, PROCESSING, now)
            payout.update_processing(
                transit=TransitDetails(
                    sent_at=sent,
                    expected_arrival_at=expected_arrival_at,
                    sent_by=actor,
                    tracking_number=tracking_number,
                    notes=notes,
                )
            )
            payout.append_audit(
                "payment_sent",
                actor,
                now,
                sent_at=sent.isoformat(),
                tracking_number=tracking_number,
            )
            self._payouts.save(conn, payout, previous=previous)

        logger.info("payment sent payout_id=%s", pid)
        return payout

    def confirm_payment_complete(
        self,
        payout_id,
        *,
        actor: str,
        completed_at: Optional[datetime] = None,
        confirmation_number: Optional[str] = None,
        notes: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> Payout:
        pid = parse_payout_id(payout_id)
        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            previous = payout.copy()
            now = self._clock()
            done_at = completed_at or now

            move(payout, COMPLETED, now)
            payout.update_processing(
                completion=CompletionDetails(
                    completed_at=done_at,
                    completed_by=actor,
                    confirmation_number=confirmation_number,
                    notes=notes,
                )
            )
            if receipt_url:
                payout.receipt_url = receipt_url
            payout.append_audit(
                "payment_completed",
                actor,
                now,
                completed_at=done_at.isoformat(),
                confirmation_number=confirmation_number,
            )

            # member leaves the queue and the tenure reset clock starts, atomically with completion
            self._memberships.lock(conn, payout.membership_id)
            self._memberships.set_status(conn, payout.membership_id, MEMBER_PAID)
            self._lifecycle.apply_schedule(payout, done_at, actor=actor, now=now)

            self._payouts.save(conn, payout, previous=previous)

        logger.info("payment completed payout_id=%s", pid)

        if not payout.receipt_url:
            try:
                self.generate_receipt(pid, actor=SYSTEM_ACTOR)
                payout = self._reload(pid) or payout
            except Exception:
                logger.exception("receipt generation failed payout_id=%s", pid)

        try:
            self._notifier.send(
                payout.user_id,
                PAYOUT_COMPLETED,
                {
                    "payout_id": str(payout.id),
                    "net_amount_cents": payout.processing.calculation.net_cents if payout.processing.calculation else None,
                    "currency": payout.currency,
                    "receipt_url": payout.receipt_url,
                },
            )
        except Exception:
            logger.exception("owner notification failed payout_id=%s template=%s", pid, PAYOUT_COMPLETED)

        return payout

    def handle_payment_failure(
        self,
        payout_id,
        *,
        actor: str,
        code: str,
        message: str,
        retryable: bool = True,
        details: Optional[dict[str, Any]] = None,
    ) -> Payout:
        pid = parse_payout_id(payout_id)
        if not (code or "").strip():
            raise ValidationError("failure code is required", code="INVALID_FAILURE")

        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            if payout.status not in PAYMENT_STATES:
                raise StateConflict(
                    f"A payment failure cannot be recorded for a {payout.status} payout",
                    code="INVALID_STATE",
                    current_state=payout.status,
                )
            previous = payout.copy()
            now = self._clock()
            old = move(payout, PAYMENT_FAILED, now)
            payout.update_processing(
                failure=PaymentFailure(
                    code=code,
                    message=message,
                    retryable=retryable,
                    failed_at=now,
                    previous_status=old,
                    details=dict(details or {}),
                )
            )
            payout.append_audit(
                "payment_failed",
                actor,
                now,
                code=code,
                message=message,
                retryable=retryable,
                previous_status=old,
            )
            self._payouts.save(conn, payout, previous=previous)

        logger.warning("payment failed payout_id=%s code=%s retryable=%s", pid, code, retryable)
        return payout

    def retry_payment(self, payout_id, *, actor: str) -> Payout:
        pid = parse_payout_id(payout_id)
        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            failure = payout.processing.failure
            if payout.status != PAYMENT_FAILED:
                raise StateConflict("Only failed payments can be retried", code="INVALID_STATE", current_state=payout.status)
            if failure is None or not failure.retryable:
                raise StateConflict("This payment failure is not retryable", code="NOT_RETRYABLE", current_state=payout.status)

            previous = payout.copy()
            now = self._clock()
            move(payout, APPROVED, now)
            payout.update_processing(failure=None, transit=None)
            payout.append_audit("payment_retried", actor, now, previous_failure=failure.code)
            self._payouts.save(conn, payout, previous=previous)

        logger.info("payment retry payout_id=%s", pid)
        return payout

    # ==========================================================
    # Receipts
    # ==========================================================

    def generate_receipt(self, payout_id, *, actor: str = SYSTEM_ACTOR) -> str:
        pid = parse_payout_id(payout_id)
        with self._connect() as conn:
            payout = get_or_404(self._payouts, conn, pid)
            if payout.status != COMPLETED:
                raise StateConflict("Receipts are only available for completed payouts", code="INVALID_STATE", current_state=payout.status)
            calc = payout.processing.calculation
            if calc is None:
                has_tax_form = self._profiles.has_valid_tax_form(conn, payout.user_id, self._clock())
                calc = self.calculate_net_payout(has_tax_form, gross_cents=payout.amount_cents)

        completion = payout.processing.completion
        try:
            url = self._documents.render(
                RECEIPT_TEMPLATE,
                {
                    "payout_id": str(payout.id),
                    "user_id": payout.user_id,
                    "currency": payout.currency,
                    "payment_method": payout.payment_method,
                    "calculation": calc.to_dict(),
                    "completed_at": completion.completed_at.isoformat() if completion else None,
                    "confirmation_number": completion.confirmation_number if completion else None,
                },
            )
        except (CollaboratorUnavailable, CollaboratorRejected) as e:
            raise DependencyFailure("Document service is unavailable", code="DOCUMENT_SERVICE_UNAVAILABLE") from e

        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            previous = payout.copy()
            now = self._clock()
            payout.receipt_url = url
            if payout.processing.calculation is None:
                payout.update_processing(calculation=calc)
            payout.append_audit("receipt_generated", actor, now, receipt_url=url)
            payout.updated_at = now
            self._payouts.save(conn, payout, previous=previous)

        return url

    def _reload(self, pid) -> Optional[Payout]:
        with self._connect() as conn:
            return self._payouts.get(conn, pid)
