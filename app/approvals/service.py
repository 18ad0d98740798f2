# app/approvals/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from app.approvals.workflow import ApprovalPolicy, apply_decision, rejection_reason
from app.clock import utcnow
from app.collaborators.base import NotificationSender
from app.collaborators.notifications import PAYOUT_APPROVED, PAYOUT_REJECTED
from app.errors import Forbidden, NotFound, StateConflict, ValidationError
from app.payouts.model import WORKFLOW_APPROVED, WORKFLOW_REJECTED, Payout, actor_for
from app.payouts.service import lock_or_404, move, parse_payout_id
from app.payouts.state_machine import APPROVED, PENDING_APPROVAL, REJECTED

logger = logging.getLogger("tenure.approvals")


@dataclass(frozen=True)
class ApprovalStatus:
    payout_id: str
    status: str
    is_complete: bool
    is_approved: bool
    is_rejected: bool
    current_approvals: int
    required_approvals: int
    pending_approvals: int
    rejection_reason: Optional[str]
    approvers: list[dict[str, Any]]


class ApprovalService:
    def __init__(
        self,
        *,
        connect,
        payouts,
        notifier: NotificationSender,
        policy: ApprovalPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._connect = connect
        self._payouts = payouts
        self._notifier = notifier
        self._policy = policy
        self._clock = clock

    def submit_decision(
        self,
        payout_id,
        *,
        admin_id: str,
        roles: Iterable[str],
        approved: bool,
        reason: Optional[str] = None,
    ) -> Payout:
        pid = parse_payout_id(payout_id)
        roles = tuple(roles or ())

        if not self._policy.is_authorized(roles):
            logger.warning("approval attempt denied payout_id=%s admin_id=%s roles=%s", pid, admin_id, list(roles))
            raise Forbidden("Caller is not allowed to approve payouts", code="FORBIDDEN")

        reason = (reason or "").strip() or None
        if not approved and reason is None:
            raise ValidationError("A reason is required to reject a payout", code="REASON_REQUIRED")

        with self._connect() as conn:
            payout = lock_or_404(self._payouts, conn, pid)
            previous = payout.copy()
            now = self._clock()

            workflow = apply_decision(payout.approval_workflow, admin_id, approved, reason, now)
            if payout.status != PENDING_APPROVAL:
                raise StateConflict(
                    f"Payout is {payout.status}; decisions are no longer accepted",
                    code="ALREADY_DECIDED",
                    current_state=payout.status,
                )

            payout.approval_workflow = workflow
            if workflow.status == WORKFLOW_APPROVED:
                move(payout, APPROVED, now)
            elif workflow.status == WORKFLOW_REJECTED:
                move(payout, REJECTED, now)
            payout.updated_at = now

            payout.append_audit(
                "approval_submitted" if approved else "rejection_submitted",
                actor_for(admin_id),
                now,
                decision="approved" if approved else "rejected",
                reason=reason,
                current_approvals=workflow.current_approvals,
                required_approvals=workflow.required_approvals,
                workflow_status=workflow.status,
            )
            self._payouts.save(conn, payout, previous=previous)

        logger.info(
            "approval decision payout_id=%s admin_id=%s approved=%s workflow=%s",
            pid,
            admin_id,
            approved,
            workflow.status,
        )

        # one notification per terminal transition, after commit
        if workflow.is_terminal:
            self._notify_owner(payout)
        return payout

    def _notify_owner(self, payout: Payout) -> None:
        wf = payout.approval_workflow
        template = PAYOUT_APPROVED if wf.status == WORKFLOW_APPROVED else PAYOUT_REJECTED
        try:
            self._notifier.send(
                payout.user_id,
                template,
                {
                    "payout_id": str(payout.id),
                    "status": payout.status,
                    "amount_cents": payout.amount_cents,
                    "currency": payout.currency,
                    "reason": rejection_reason(wf),
                },
            )
        except Exception:
            logger.exception("owner notification failed payout_id=%s template=%s", payout.id, template)

    def approval_status(self, payout_id) -> ApprovalStatus:
        pid = parse_payout_id(payout_id)
        with self._connect() as conn:
            payout = self._payouts.get(conn, pid)
        if payout is None:
            raise NotFound(f"Payout {pid} not found", code="NOT_FOUND")

        wf = payout.approval_workflow
        pending = 0 if wf.is_terminal else max(0, wf.required_approvals - wf.current_approvals)
        return ApprovalStatus(
            payout_id=str(payout.id),
            status=wf.status,
            is_complete=wf.is_terminal,
            is_approved=wf.status == WORKFLOW_APPROVED,
            is_rejected=wf.status == WORKFLOW_REJECTED,
            current_approvals=wf.current_approvals,
            required_approvals=wf.required_approvals,
            pending_approvals=pending,
            rejection_reason=rejection_reason(wf),
            approvers=[a.to_dict() for a in wf.approvers],
        )

    def pending_approvals(self, *, limit: int = 50, offset: int = 0) -> list[Payout]:
        with self._connect() as conn:
            return self._payouts.list_payouts(conn, status=PENDING_APPROVAL, limit=limit, offset=offset)
