# schemas.py
from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Any, Dict, List, Optional, Literal

PayoutStatus = Literal[
    "pending_approval",
    "approved",
    "rejected",
    "scheduled",
    "processing",
    "completed",
    "payment_failed",
    "cancelled",
]


# -------- PAYOUT BATCHES --------
class CreatePayoutBatchRequest(BaseModel):
    count: int = Field(gt=0, le=1000)
    notes: Optional[str] = Field(default=None, max_length=1000)


class BatchFailure(BaseModel):
    user_id: str
    membership_id: str
    reason: str
    message: str
    errors: List[str] = []


class PayoutBatchResponse(BaseModel):
    created_count: int
    failed_count: int
    payout_ids: List[UUID]
    failed: List[BatchFailure]


# -------- PAYOUTS --------
class PayoutResponse(BaseModel):
    id: UUID
    membership_id: str
    user_id: str
    amount_cents: int
    currency: str
    status: PayoutStatus
    payment_method: str
    eligibility_snapshot: Dict[str, Any]
    approval_workflow: Dict[str, Any]
    processing: Dict[str, Any]
    audit_trail: List[Dict[str, Any]]
    receipt_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PayoutListResponse(BaseModel):
    payouts: List[PayoutResponse]
    limit: int
    offset: int


# -------- APPROVALS --------
class ApprovalDecisionRequest(BaseModel):
    approved: bool
    reason: Optional[str] = Field(default=None, max_length=2000)


class CancelPayoutRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ApprovalStatusResponse(BaseModel):
    payout_id: UUID
    status: Literal["pending", "approved", "rejected"]
    is_complete: bool
    is_approved: bool
    is_rejected: bool
    current_approvals: int
    required_approvals: int
    pending_approvals: int
    rejection_reason: Optional[str] = None
    approvers: List[Dict[str, Any]]


# -------- PAYMENTS --------
class MarkSentRequest(BaseModel):
    sent_at: Optional[AwareDatetime] = None
    expected_arrival_at: Optional[AwareDatetime] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CompletePaymentRequest(BaseModel):
    completed_at: Optional[AwareDatetime] = None
    confirmation_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)
    receipt_url: Optional[str] = Field(default=None, max_length=2000)


class PaymentFailureRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    message: str = Field(min_length=1, max_length=1000)
    retryable: bool = True
    details: Dict[str, Any] = {}


# -------- ELIGIBILITY --------
class EligibilityResponse(BaseModel):
    is_eligible: bool
    total_revenue_cents: int
    revenue_source: Literal["billing_service", "local_ledger"]
    program_age_months: int
    revenue_threshold_cents: int
    age_threshold_months: int
    revenue_met: bool
    age_met: bool
    potential_winners: int
    payout_amount_cents: int
    eligible_unpaid_count: int
    checked_at: datetime
    reason: Optional[str] = None


class CandidateItem(BaseModel):
    membership_id: str
    user_id: str
    queue_rank: int
    tenure_started_at: datetime
    last_payment_at: Optional[datetime] = None
    successful_payments: int
    lifetime_total_cents: int
    subscription_status: str
    has_received_payout: bool
    is_eligible: bool


class EligibleMembersResponse(BaseModel):
    count: int
    members: List[CandidateItem]


# -------- MEMBERSHIPS --------
class ReactivateRequest(BaseModel):
    new_payment_date: AwareDatetime


class ReactivateResponse(BaseModel):
    user_id: str
    membership_id: str
    member_status: str
    tenure_started_at: datetime
    reactivated_at: datetime


class MembershipStatusResponse(BaseModel):
    user_id: str
    membership_id: str
    member_status: str
    tenure_started_at: Optional[datetime] = None
    queue_rank: Optional[int] = None
    is_eligible: bool
    last_payout_id: Optional[str] = None
    removal: Optional[Dict[str, Any]] = None


class RemovalSweepResponse(BaseModel):
    due: int
    removed: List[str]
    skipped: List[str]
    failed: List[Dict[str, str]]
