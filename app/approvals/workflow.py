# app/approvals/workflow.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from app.errors import StateConflict
from app.payouts.model import (
    WORKFLOW_APPROVED,
    WORKFLOW_PENDING,
    WORKFLOW_REJECTED,
    ApprovalWorkflow,
    Approver,
)


@dataclass(frozen=True)
class ApprovalPolicy:
    threshold_cents: int
    at_or_above_threshold: int = 2
    below_threshold: int = 1
    roles: frozenset[str] = frozenset({"admin", "finance_manager"})

    @classmethod
    def from_settings(cls, s) -> "ApprovalPolicy":
        return cls(
            threshold_cents=s.APPROVAL_THRESHOLD_CENTS,
            at_or_above_threshold=s.APPROVALS_AT_OR_ABOVE_THRESHOLD,
            below_threshold=s.APPROVALS_BELOW_THRESHOLD,
            roles=s.approver_roles(),
        )

    def required_for(self, amount_cents: int) -> int:
        if amount_cents >= self.threshold_cents:
            return self.at_or_above_threshold
        return self.below_threshold

    def is_authorized(self, roles) -> bool:
        return any((r or "").lower() in self.roles for r in roles or ())


def new_workflow(required_approvals: int, at: datetime) -> ApprovalWorkflow:
    if required_approvals < 1:
        raise ValueError("required_approvals must be >= 1")
    return ApprovalWorkflow(required_approvals=required_approvals, created_at=at)


def apply_decision(
    workflow: ApprovalWorkflow,
    admin_id: str,
    approved: bool,
    reason: Optional[str],
    at: datetime,
) -> ApprovalWorkflow:
    """
    pending -> approved | rejected. Both outcomes are absorbing.

    A single rejection is final; approval needs `required_approvals` distinct
    approvers and no rejection on record.
    """
    if workflow.is_terminal:
        raise StateConflict(
            f"Approval workflow is already {workflow.status}",
            code="ALREADY_DECIDED",
            current_state=workflow.status,
        )

    admin_id = str(admin_id)
    if workflow.decision_of(admin_id) is not None:
        raise StateConflict(
            "This approver has already recorded a decision for the payout",
            code="DUPLICATE_APPROVER",
            current_state=workflow.status,
        )

    decision = WORKFLOW_APPROVED if approved else WORKFLOW_REJECTED
    approvers = workflow.approvers + (Approver(admin_id=admin_id, decision=decision, reason=reason, timestamp=at),)

    if not approved:
        return replace(workflow, approvers=approvers, status=WORKFLOW_REJECTED, completed_at=at)

    current = workflow.current_approvals + 1
    status = WORKFLOW_PENDING
    completed_at = None
    if current >= workflow.required_approvals and not any(a.decision == WORKFLOW_REJECTED for a in approvers):
        status = WORKFLOW_APPROVED
        completed_at = at

    return replace(
        workflow,
        approvers=approvers,
        current_approvals=current,
        status=status,
        completed_at=completed_at,
    )


def rejection_reason(workflow: ApprovalWorkflow) -> Optional[str]:
    for a in workflow.approvers:
        if a.decision == WORKFLOW_REJECTED:
            return a.reason
    return None
