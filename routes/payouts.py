
# routes/payouts.py
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Response

from schemas import (
    ApprovalDecisionRequest,
    ApprovalStatusResponse,
    BatchFailure,
    CancelPayoutRequest,
    CompletePaymentRequest,
    CreatePayoutBatchRequest,
    MarkSentRequest,
    PaymentFailureRequest,
    PayoutBatchResponse,
    PayoutListResponse,
    PayoutResponse,
)

from app.errors import PayoutEngineError
from app.engine import Engine
from app.payouts.model import Payout, actor_for
from deps.admin import require_admin, require_staff
from deps.auth import get_current_user, CurrentUser
from deps.engine import get_engine
from services.idempotency import fingerprint

logger = logging.getLogger("tenure.routes.payouts")
router = APIRouter(prefix="/v1", tags=["payouts"])

BATCH_ROUTE_KEY = "POST:/v1/payouts/batches"


def _out(p: Payout) -> PayoutResponse:
    return PayoutResponse(**p.to_dict())


@router.post("/payouts/batches", response_model=PayoutBatchResponse, status_code=201)
def create_payout_batch(
    req: CreatePayoutBatchRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    user: CurrentUser = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    if not idempotency_key:
        return _run_batch(req, user, engine)

    key = {"actor": user.user_id, "key": idempotency_key, "route_key": BATCH_ROUTE_KEY}
    with engine.connect() as conn:
        stored = engine.idempotency.reserve(conn, body_hash=fingerprint(req.model_dump()), **key)
    if stored is not None:
        logger.info("batch replayed actor=%s key=%s", user.user_id, idempotency_key)
        response.status_code = stored.status_code
        return stored.body

    try:
        body = _run_batch(req, user, engine)
    except PayoutEngineError:
        # refused before any payout was written; the key may be reused
        with engine.connect() as conn:
            engine.idempotency.release(conn, **key)
        raise

    with engine.connect() as conn:
        engine.idempotency.complete(conn, body=body.model_dump(mode="json"), status_code=201, **key)
    return body


def _run_batch(req: CreatePayoutBatchRequest, user: CurrentUser, engine: Engine) -> PayoutBatchResponse:
    result = engine.winners.create_payout_batch(req.count, user.user_id, notes=req.notes)
    return PayoutBatchResponse(
        created_count=result.created_count,
        failed_count=result.failed_count,
        payout_ids=[p.id for p in result.created],
        failed=[BatchFailure(**f.to_dict()) for f in result.failed],
    )


@router.get("/payouts", response_model=PayoutListResponse)
def list_payouts(
    status: Optional[str] = Query(default=None),
    user_id: Optional[UUID] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    payouts = engine.payouts.list_payouts(
        status=status,
        user_id=str(user_id) if user_id else None,
        limit=limit,
        offset=offset,
    )
    return PayoutListResponse(payouts=[_out(p) for p in payouts], limit=limit, offset=offset)


@router.get("/payouts/{payout_id}", response_model=PayoutResponse)
def get_payout(
    payout_id: UUID,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    return _out(engine.payouts.get(payout_id))


@router.post("/payouts/{payout_id}/cancel", response_model=PayoutResponse)
def cancel_payout(
    payout_id: UUID,
    req: CancelPayoutRequest,
    user: CurrentUser = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    return _out(engine.winners.cancel_payout(payout_id, actor=actor_for(user.user_id), reason=req.reason))


# -------- approvals --------

@router.get("/approvals/pending", response_model=PayoutListResponse)
def pending_approvals(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    payouts = engine.approvals.pending_approvals(limit=limit, offset=offset)
    return PayoutListResponse(payouts=[_out(p) for p in payouts], limit=limit, offset=offset)


@router.post("/payouts/{payout_id}/decisions", response_model=PayoutResponse)
def submit_decision(
    payout_id: UUID,
    req: ApprovalDecisionRequest,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
):
    payout = engine.approvals.submit_decision(
        payout_id,
        admin_id=user.user_id,
        roles=user.roles,
        approved=req.approved,
        reason=req.reason,
    )
    return _out(payout)


@router.get("/payouts/{payout_id}/approval", response_model=ApprovalStatusResponse)
def approval_status(
    payout_id: UUID,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    s = engine.approvals.approval_status(payout_id)
    return ApprovalStatusResponse(**asdict(s))


# -------- payment processing --------

@router.post("/payouts/{payout_id}/instructions", response_model=PayoutResponse)
def generate_instructions(
    payout_id: UUID,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    return _out(engine.payments.generate_payment_instructions(payout_id, actor=actor_for(user.user_id)))


@router.post("/payouts/{payout_id}/sent", response_model=PayoutResponse)
def mark_sent(
    payout_id: UUID,
    req: MarkSentRequest,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    payout = engine.payments.mark_payment_sent(
        payout_id,
        actor=actor_for(user.user_id),
        sent_at=req.sent_at,
        expected_arrival_at=req.expected_arrival_at,
        tracking_number=req.tracking_number,
        notes=req.notes,
    )
    return _out(payout)


@router.post("/payouts/{payout_id}/complete", response_model=PayoutResponse)
def confirm_complete(
    payout_id: UUID,
    req: CompletePaymentRequest,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    payout = engine.payments.confirm_payment_complete(
        payout_id,
        actor=actor_for(user.user_id),
        completed_at=req.completed_at,
        confirmation_number=req.confirmation_number,
        notes=req.notes,
        receipt_url=req.receipt_url,
    )
    return _out(payout)


@router.post("/payouts/{payout_id}/failure", response_model=PayoutResponse)
def record_failure(
    payout_id: UUID,
    req: PaymentFailureRequest,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    payout = engine.payments.handle_payment_failure(
        payout_id,
        actor=actor_for(user.user_id),
        code=req.code,
        message=req.message,
        retryable=req.retryable,
        details=req.details,
    )
    return _out(payout)


@router.post("/payouts/{payout_id}/retry", response_model=PayoutResponse)
def retry_payment(
    payout_id: UUID,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    return _out(engine.payments.retry_payment(payout_id, actor=actor_for(user.user_id)))
