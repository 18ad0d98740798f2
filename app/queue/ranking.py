# app/queue/ranking.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Iterable, Optional

MEMBER_ACTIVE = "active"
ACTIVE_SUBSCRIPTION_STATES = frozenset({"active", "trialing"})


@dataclass(frozen=True)
class MemberFacts:
    """Per-membership aggregate read from the store in one snapshot."""
    membership_id: str
    user_id: str
    member_status: str
    subscription_status: Optional[str]
    first_qualifying_payment_at: Optional[datetime]
    last_payment_at: Optional[datetime]
    successful_payments: int
    lifetime_total_cents: int
    has_received_payout: bool
    tenure_started_at: Optional[datetime] = None


@dataclass(frozen=True)
class Candidate:
    membership_id: str
    user_id: str
    queue_rank: int
    tenure_started_at: datetime
    last_payment_at: Optional[datetime]
    successful_payments: int
    lifetime_total_cents: int
    subscription_status: str
    has_received_payout: bool
    is_eligible: bool

    def to_dict(self) -> dict:
        out = asdict(self)
        out["tenure_started_at"] = self.tenure_started_at.isoformat()
        out["last_payment_at"] = self.last_payment_at.isoformat() if self.last_payment_at else None
        return out


def is_active_subscription(status: Optional[str]) -> bool:
    return (status or "").lower() in ACTIVE_SUBSCRIPTION_STATES


def in_queue(f: MemberFacts) -> bool:
    return (
        f.member_status == MEMBER_ACTIVE
        and is_active_subscription(f.subscription_status)
        and not f.has_received_payout
        and f.first_qualifying_payment_at is not None
    )


def build_queue(facts: Iterable[MemberFacts], *, min_payments: int = 12) -> list[Candidate]:
    """
    Pure ranking over current facts.

    Longest-waiting first: earliest qualifying payment of the current tenure,
    ties broken by membership id. Ranks are dense 1..n over the filtered set.
    """
    members = [f for f in facts if in_queue(f)]
    members.sort(key=lambda f: (f.first_qualifying_payment_at, f.membership_id))

    out: list[Candidate] = []
    for rank, f in enumerate(members, start=1):
        out.append(
            Candidate(
                membership_id=f.membership_id,
                user_id=f.user_id,
                queue_rank=rank,
                tenure_started_at=f.first_qualifying_payment_at,
                last_payment_at=f.last_payment_at,
                successful_payments=f.successful_payments,
                lifetime_total_cents=f.lifetime_total_cents,
                subscription_status=(f.subscription_status or "").lower(),
                has_received_payout=f.has_received_payout,
                is_eligible=f.successful_payments >= min_payments,
            )
        )
    return out


def eligible_unpaid(queue: Iterable[Candidate], limit: Optional[int] = None) -> list[Candidate]:
    picked = [c for c in queue if c.is_eligible and not c.has_received_payout]
    return picked if limit is None else picked[: max(0, limit)]
