# app/eligibility/evaluator.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, asdict
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Optional

import psycopg2

from app.clock import utcnow
from app.collaborators.base import RevenueSource
from app.collaborators.http import CollaboratorRejected, CollaboratorUnavailable
from app.errors import DependencyFailure
from app.payouts.model import SYSTEM_ACTOR
from app.queue.ranking import Candidate
from services.admin_alerts import create_admin_alert
from services.audit_log import write_audit_log

logger = logging.getLogger("tenure.eligibility")

DAYS_PER_MONTH = 30.44

SOURCE_BILLING = "billing_service"
SOURCE_LEDGER = "local_ledger"


@dataclass(frozen=True)
class EligibilityConfig:
    launch_date: date
    revenue_threshold_cents: int
    age_threshold_months: int
    payout_amount_cents: int

    @classmethod
    def from_settings(cls, s) -> "EligibilityConfig":
        return cls(
            launch_date=s.PROGRAM_LAUNCH_DATE,
            revenue_threshold_cents=s.REVENUE_THRESHOLD_CENTS,
            age_threshold_months=s.AGE_THRESHOLD_MONTHS,
            payout_amount_cents=s.PAYOUT_AMOUNT_CENTS,
        )


@dataclass(frozen=True)
class EligibilityResult:
    revenue_met: bool
    age_met: bool
    is_eligible: bool
    potential_winners: int


@dataclass(frozen=True)
class RevenueReading:
    cents: int
    source: str


@dataclass(frozen=True)
class EligibilitySnapshot:
    is_eligible: bool
    total_revenue_cents: int
    revenue_source: str
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

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["checked_at"] = self.checked_at.isoformat()
        return out


def program_age_months(launch: date | datetime, now: datetime) -> int:
    """Whole months since launch, using a fixed 30.44-day month. Never negative."""
    if isinstance(launch, datetime):
        start = launch if launch.tzinfo else launch.replace(tzinfo=timezone.utc)
    else:
        start = datetime.combine(launch, time.min, tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    days = (now - start).total_seconds() / 86400
    if days <= 0:
        return 0
    return math.floor(days / DAYS_PER_MONTH)


def evaluate(revenue_cents: int, age_months: int, config: EligibilityConfig) -> EligibilityResult:
    revenue_met = revenue_cents >= config.revenue_threshold_cents
    age_met = age_months >= config.age_threshold_months
    return EligibilityResult(
        revenue_met=revenue_met,
        age_met=age_met,
        is_eligible=revenue_met and age_met,
        potential_winners=max(0, revenue_cents // config.payout_amount_cents),
    )


def _money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def not_eligible_reason(result: EligibilityResult, revenue_cents: int, age_months: int, config: EligibilityConfig) -> Optional[str]:
    if result.is_eligible:
        return None
    parts = []
    if not result.revenue_met:
        parts.append(f"revenue {_money(revenue_cents)} is below the threshold {_money(config.revenue_threshold_cents)}")
    if not result.age_met:
        parts.append(f"program age {age_months} months is below the required {config.age_threshold_months}")
    return "; ".join(parts)


class EligibilityEvaluator:
    def __init__(
        self,
        *,
        connect,
        queue_repo,
        projection,
        billing: RevenueSource,
        config: EligibilityConfig,
        clock: Callable[[], datetime] = utcnow,
        audit=write_audit_log,
        alert=create_admin_alert,
    ):
        self._connect = connect
        self._queue_repo = queue_repo
        self._projection = projection
        self._billing = billing
        self.config = config
        self._clock = clock
        self._audit = audit
        self._alert = alert

    # ==========================================================
    # Revenue
    # ==========================================================

    def _ledger_revenue(self) -> Optional[int]:
        try:
            with self._connect() as conn:
                return self._queue_repo.local_revenue_cents(conn)
        except psycopg2.Error as e:
            logger.error("local ledger revenue unavailable err=%s", e)
            return None

    def total_revenue(self) -> RevenueReading:
        """
        Billing service first, local ledger as the fallback. When both answer
        and disagree the divergence is logged and the billing figure wins.
        """
        try:
            remote = self._billing.get_total_revenue_cents()
        except (CollaboratorUnavailable, CollaboratorRejected) as e:
            logger.warning("billing revenue unavailable, falling back to local ledger err=%s", e)
            local = self._ledger_revenue()
            if local is None:
                raise DependencyFailure(
                    "Revenue is unavailable from both the billing service and the local ledger",
                    code="REVENUE_UNAVAILABLE",
                ) from e
            return RevenueReading(cents=local, source=SOURCE_LEDGER)

        local = self._ledger_revenue()
        if local is not None and local != remote:
            logger.warning(
                "revenue divergence billing_cents=%s ledger_cents=%s delta_cents=%s",
                remote,
                local,
                remote - local,
            )
        return RevenueReading(cents=remote, source=SOURCE_BILLING)

    # ==========================================================
    # Checks
    # ==========================================================

    def check(self) -> EligibilitySnapshot:
        now = self._clock()
        revenue = self.total_revenue()
        age = program_age_months(self.config.launch_date, now)
        result = evaluate(revenue.cents, age, self.config)
        eligible_count = len(self._projection.eligible_unpaid())

        return EligibilitySnapshot(
            is_eligible=result.is_eligible,
            total_revenue_cents=revenue.cents,
            revenue_source=revenue.source,
            program_age_months=age,
            revenue_threshold_cents=self.config.revenue_threshold_cents,
            age_threshold_months=self.config.age_threshold_months,
            revenue_met=result.revenue_met,
            age_met=result.age_met,
            potential_winners=result.potential_winners,
            payout_amount_cents=self.config.payout_amount_cents,
            eligible_unpaid_count=eligible_count,
            checked_at=now,
            reason=not_eligible_reason(result, revenue.cents, age, self.config),
        )

    def eligible_members(self, limit: Optional[int] = None) -> list[Candidate]:
        return self._projection.eligible_unpaid(limit)

    def run_scheduled_check(self, *, actor: str = SYSTEM_ACTOR) -> EligibilitySnapshot:
        try:
            snapshot = self.check()
        except Exception as e:
            self._audit_safely(
                actor,
                "eligibility_check",
                {"ok": False, "error": type(e).__name__, "message": str(e)},
            )
            raise

        if snapshot.is_eligible:
            self._alert_safely(snapshot)
            self._audit_safely(actor, "program_eligible", snapshot.to_dict())

        self._audit_safely(actor, "eligibility_check", {"ok": True, **snapshot.to_dict()})
        logger.info(
            "eligibility check eligible=%s revenue_cents=%s source=%s age_months=%s potential_winners=%s",
            snapshot.is_eligible,
            snapshot.total_revenue_cents,
            snapshot.revenue_source,
            snapshot.program_age_months,
            snapshot.potential_winners,
        )
        return snapshot

    def _audit_safely(self, actor: str, action: str, metadata: dict[str, Any]) -> None:
        try:
            with self._connect() as conn:
                self._audit(conn, actor=actor, action=action, target_id=None, metadata=metadata)
        except Exception:
            logger.exception("audit write failed action=%s", action)

    def _alert_safely(self, snapshot: EligibilitySnapshot) -> None:
        try:
            with self._connect() as conn:
                self._alert(
                    conn,
                    kind="payout_eligibility",
                    severity="info",
                    message=(
                        f"Program is eligible for payouts: {snapshot.potential_winners} potential winner(s), "
                        f"{snapshot.eligible_unpaid_count} eligible member(s) in queue"
                    ),
                    metadata=snapshot.to_dict(),
                )
        except Exception:
            logger.exception("admin alert failed kind=payout_eligibility")
