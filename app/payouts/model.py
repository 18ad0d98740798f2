from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional, Any
from uuid import UUID
from datetime import datetime

from app.payments.calculator import PayoutCalculation

# Bump when the JSONB layout of an embedded record changes.
SCHEMA_VERSION = 1

SYSTEM_ACTOR = "system"


class UnsupportedSchemaVersion(ValueError):
    pass


def _check_version(payload: dict[str, Any], record: str) -> None:
    version = payload.get("schema_version", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        raise UnsupportedSchemaVersion(f"{record}: unsupported schema_version {version!r}")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def actor_for(user_id: Any) -> str:
    return f"admin:{user_id}"


# ==========================================================
# Audit trail
# ==========================================================

@dataclass(frozen=True)
class AuditEntry:
    action: str
    actor: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AuditEntry":
        return cls(
            action=payload["action"],
            actor=payload["actor"],
            timestamp=_dt(payload["timestamp"]),
            details=dict(payload.get("details") or {}),
        )


# ==========================================================
# Approval workflow
# ==========================================================

WORKFLOW_PENDING = "pending"
WORKFLOW_APPROVED = "approved"
WORKFLOW_REJECTED = "rejected"


@dataclass(frozen=True)
class Approver:
    admin_id: str
    decision: str  # "approved" | "rejected"
    reason: Optional[str]
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "admin_id": self.admin_id,
            "decision": self.decision,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Approver":
        return cls(
            admin_id=str(payload["admin_id"]),
            decision=payload["decision"],
            reason=payload.get("reason"),
            timestamp=_dt(payload["timestamp"]),
        )


@dataclass(frozen=True)
class ApprovalWorkflow:
    required_approvals: int
    current_approvals: int = 0
    approvers: tuple[Approver, ...] = ()
    status: str = WORKFLOW_PENDING
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (WORKFLOW_APPROVED, WORKFLOW_REJECTED)

    def decision_of(self, admin_id: str) -> Optional[Approver]:
        for a in self.approvers:
            if a.admin_id == str(admin_id):
                return a
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "required_approvals": self.required_approvals,
            "current_approvals": self.current_approvals,
            "approvers": [a.to_dict() for a in self.approvers],
            "status": self.status,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ApprovalWorkflow":
        _check_version(payload, "approval_workflow")
        return cls(
            required_approvals=int(payload["required_approvals"]),
            current_approvals=int(payload.get("current_approvals") or 0),
            approvers=tuple(Approver.from_dict(a) for a in payload.get("approvers") or []),
            status=payload.get("status") or WORKFLOW_PENDING,
            created_at=_dt(payload.get("created_at")),
            completed_at=_dt(payload.get("completed_at")),
        )


# ==========================================================
# Eligibility snapshot (write-once)
# ==========================================================

@dataclass(frozen=True)
class PayoutEligibilitySnapshot:
    queue_rank: int
    membership_id: str
    tenure_started_at: datetime
    last_payment_at: Optional[datetime]
    successful_payments: int
    lifetime_total_cents: int
    subscription_status: str
    compliance_verified: bool
    has_active_subscription: bool
    captured_at: datetime
    selection_criteria: str = "queue_rank"
    program: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "queue_rank": self.queue_rank,
            "membership_id": self.membership_id,
            "tenure_started_at": self.tenure_started_at.isoformat(),
            "last_payment_at": _iso(self.last_payment_at),
            "successful_payments": self.successful_payments,
            "lifetime_total_cents": self.lifetime_total_cents,
            "subscription_status": self.subscription_status,
            "compliance_verified": self.compliance_verified,
            "has_active_subscription": self.has_active_subscription,
            "captured_at": self.captured_at.isoformat(),
            "selection_criteria": self.selection_criteria,
            "program": self.program,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PayoutEligibilitySnapshot":
        _check_version(payload, "eligibility_snapshot")
        return cls(
            queue_rank=int(payload["queue_rank"]),
            membership_id=str(payload["membership_id"]),
            tenure_started_at=_dt(payload["tenure_started_at"]),
            last_payment_at=_dt(payload.get("last_payment_at")),
            successful_payments=int(payload["successful_payments"]),
            lifetime_total_cents=int(payload["lifetime_total_cents"]),
            subscription_status=payload["subscription_status"],
            compliance_verified=bool(payload["compliance_verified"]),
            has_active_subscription=bool(payload["has_active_subscription"]),
            captured_at=_dt(payload["captured_at"]),
            selection_criteria=payload.get("selection_criteria") or "queue_rank",
            program=payload.get("program"),
        )


# ==========================================================
# Processing record
# ==========================================================

@dataclass(frozen=True)
class InstructionsRecord:
    payment_method: str
    net_amount_cents: int
    generated_at: datetime
    generated_by: str
    document_url: Optional[str] = None
    document_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_method": self.payment_method,
            "net_amount_cents": self.net_amount_cents,
            "generated_at": self.generated_at.isoformat(),
            "generated_by": self.generated_by,
            "document_url": self.document_url,
            "document_error": self.document_error,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "InstructionsRecord":
        return cls(
            payment_method=payload["payment_method"],
            net_amount_cents=int(payload["net_amount_cents"]),
            generated_at=_dt(payload["generated_at"]),
            generated_by=payload["generated_by"],
            document_url=payload.get("document_url"),
            document_error=payload.get("document_error"),
        )


@dataclass(frozen=True)
class TransitDetails:
    sent_at: datetime
    expected_arrival_at: Optional[datetime]
    sent_by: str
    tracking_number: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent_at": self.sent_at.isoformat(),
            "expected_arrival_at": _iso(self.expected_arrival_at),
            "sent_by": self.sent_by,
            "tracking_number": self.tracking_number,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TransitDetails":
        return cls(
            sent_at=_dt(payload["sent_at"]),
            expected_arrival_at=_dt(payload.get("expected_arrival_at")),
            sent_by=payload["sent_by"],
            tracking_number=payload.get("tracking_number"),
            notes=payload.get("notes"),
        )


@dataclass(frozen=True)
class CompletionDetails:
    completed_at: datetime
    completed_by: str
    confirmation_number: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed_at": self.completed_at.isoformat(),
            "completed_by": self.completed_by,
            "confirmation_number": self.confirmation_number,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CompletionDetails":
        return cls(
            completed_at=_dt(payload["completed_at"]),
            completed_by=payload["completed_by"],
            confirmation_number=payload.get("confirmation_number"),
            notes=payload.get("notes"),
        )


@dataclass(frozen=True)
class PaymentFailure:
    code: str
    message: str
    retryable: bool
    failed_at: datetime
    previous_status: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "failed_at": self.failed_at.isoformat(),
            "previous_status": self.previous_status,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PaymentFailure":
        return cls(
            code=payload["code"],
            message=payload["message"],
            retryable=bool(payload["retryable"]),
            failed_at=_dt(payload["failed_at"]),
            previous_status=payload["previous_status"],
            details=dict(payload.get("details") or {}),
        )


@dataclass(frozen=True)
class MembershipRemovalSchedule:
    scheduled_for: datetime
    scheduled_at: datetime
    reason: str
    removed: bool = False
    removed_at: Optional[datetime] = None
    reactivated_at: Optional[datetime] = None
    new_tenure_start: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduled_for": self.scheduled_for.isoformat(),
            "scheduled_at": self.scheduled_at.isoformat(),
            "reason": self.reason,
            "removed": self.removed,
            "removed_at": _iso(self.removed_at),
            "reactivated_at": _iso(self.reactivated_at),
            "new_tenure_start": _iso(self.new_tenure_start),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "MembershipRemovalSchedule":
        return cls(
            scheduled_for=_dt(payload["scheduled_for"]),
            scheduled_at=_dt(payload["scheduled_at"]),
            reason=payload.get("reason") or "",
            removed=bool(payload.get("removed")),
            removed_at=_dt(payload.get("removed_at")),
            reactivated_at=_dt(payload.get("reactivated_at")),
            new_tenure_start=_dt(payload.get("new_tenure_start")),
        )


@dataclass(frozen=True)
class ProcessingRecord:
    calculation: Optional[PayoutCalculation] = None
    instructions: Optional[InstructionsRecord] = None
    transit: Optional[TransitDetails] = None
    completion: Optional[CompletionDetails] = None
    failure: Optional[PaymentFailure] = None
    membership_removal: Optional[MembershipRemovalSchedule] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "calculation": self.calculation.to_dict() if self.calculation else None,
            "instructions": self.instructions.to_dict() if self.instructions else None,
            "transit": self.transit.to_dict() if self.transit else None,
            "completion": self.completion.to_dict() if self.completion else None,
            "failure": self.failure.to_dict() if self.failure else None,
            "membership_removal": self.membership_removal.to_dict() if self.membership_removal else None,
        }

    @classmethod
    def from_dict(cls, payload: Optional[dict[str, Any]]) -> "ProcessingRecord":
        if not payload:
            return cls()
        _check_version(payload, "processing")

        def _load(key, loader):
            value = payload.get(key)
            return loader(value) if value else None

        return cls(
            calculation=_load("calculation", PayoutCalculation.from_dict),
            instructions=_load("instructions", InstructionsRecord.from_dict),
            transit=_load("transit", TransitDetails.from_dict),
            completion=_load("completion", CompletionDetails.from_dict),
            failure=_load("failure", PaymentFailure.from_dict),
            membership_removal=_load("membership_removal", MembershipRemovalSchedule.from_dict),
        )


# ==========================================================
# Payout aggregate
# ==========================================================

@dataclass
class Payout:
    id: UUID
    membership_id: str
    user_id: str
    amount_cents: int
    currency: str
    status: str
    payment_method: str
    eligibility_snapshot: PayoutEligibilitySnapshot
    approval_workflow: ApprovalWorkflow
    processing: ProcessingRecord
    audit_trail: list[AuditEntry]
    created_at: datetime
    updated_at: datetime
    receipt_url: Optional[str] = None

    def append_audit(self, action: str, actor: str, at: datetime, **details: Any) -> AuditEntry:
        entry = AuditEntry(action=action, actor=actor, timestamp=at, details=details)
        self.audit_trail.append(entry)
        return entry

    def update_processing(self, **changes: Any) -> None:
        self.processing = replace(self.processing, **changes)

    def copy(self) -> "Payout":
        return replace(self, audit_trail=list(self.audit_trail))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "membership_id": self.membership_id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "eligibility_snapshot": self.eligibility_snapshot.to_dict(),
            "approval_workflow": self.approval_workflow.to_dict(),
            "processing": self.processing.to_dict(),
            "audit_trail": [e.to_dict() for e in self.audit_trail],
            "receipt_url": self.receipt_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
