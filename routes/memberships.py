
# routes/memberships.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from schemas import MembershipStatusResponse, ReactivateRequest, ReactivateResponse, RemovalSweepResponse

from app.engine import Engine
from app.payouts.model import actor_for
from deps.admin import require_admin, require_staff
from deps.auth import CurrentUser
from deps.engine import get_engine

router = APIRouter(prefix="/v1", tags=["memberships"])


@router.post("/memberships/removals/run", response_model=RemovalSweepResponse)
def run_removal_sweep(
    user: CurrentUser = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    return RemovalSweepResponse(**engine.membership.run_removal_sweep().to_dict())


@router.post("/memberships/{user_id}/reactivate", response_model=ReactivateResponse)
def reactivate_membership(
    user_id: UUID,
    req: ReactivateRequest,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    out = engine.membership.reactivate_membership(
        str(user_id),
        req.new_payment_date,
        actor=actor_for(user.user_id),
    )
    return ReactivateResponse(**out)


@router.get("/memberships/{user_id}", response_model=MembershipStatusResponse)
def membership_status(
    user_id: UUID,
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    return MembershipStatusResponse(**engine.membership.membership_status(str(user_id)))
