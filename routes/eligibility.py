
# routes/eligibility.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from schemas import CandidateItem, EligibilityResponse, EligibleMembersResponse

from app.engine import Engine
from app.payouts.model import actor_for
from deps.admin import require_admin, require_staff
from deps.auth import CurrentUser
from deps.engine import get_engine

router = APIRouter(prefix="/v1", tags=["eligibility"])


@router.get("/eligibility", response_model=EligibilityResponse)
def get_eligibility_status(
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    return EligibilityResponse(**engine.eligibility.check().to_dict())


@router.get("/eligibility/members", response_model=EligibleMembersResponse)
def get_eligible_members(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    user: CurrentUser = Depends(require_staff),
    engine: Engine = Depends(get_engine),
):
    members = engine.eligibility.eligible_members(limit)
    return EligibleMembersResponse(
        count=len(members),
        members=[CandidateItem(**c.to_dict()) for c in members],
    )


@router.post("/eligibility/check", response_model=EligibilityResponse)
def trigger_eligibility_check(
    user: CurrentUser = Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    snapshot = engine.eligibility.run_scheduled_check(actor=actor_for(user.user_id))
    return EligibilityResponse(**snapshot.to_dict())
