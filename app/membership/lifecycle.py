# app/membership/lifecycle.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from app.clock import add_months, utcnow
from app.collaborators.base import NotificationSender, SubscriptionCanceller
from app.collaborators.http import CollaboratorRejected, CollaboratorUnavailable
from app.collaborators.notifications import MEMBERSHIP_REACTIVATED, MEMBERSHIP_REMOVED
from app.errors import NotFound, StateConflict, ValidationError
from app.payouts.model import SYSTEM_ACTOR, MembershipRemovalSchedule, Payout
from app.queue.ranking import MEMBER_ACTIVE

logger = logging.getLogger("tenure.membership")

MEMBER_PAID = "paid"
MEMBER_INACTIVE = "inactive"

REMOVAL_REASON = "tenure_reset_after_payout"


def removal_date(completed_at: datetime, months: int = 12) -> datetime:
    return add_months(completed_at, months)


def plan_removal(
    payout: Payout,
    completed_at: datetime,
    *,
    now: datetime,
    months: int = 12,
) -> tuple[MembershipRemovalSchedule, bool]:
    """
    Returns the removal schedule for a completed payout and whether it changed.
    Same completion date -> same stored schedule, so recomputing is a no-op.
    """
    scheduled_for = removal_date(completed_at, months)
    existing = payout.processing.membership_removal
    if existing is not None and existing.scheduled_for == scheduled_for:
        return existing, False
    if existing is not None and existing.removed:
        raise StateConflict(
            "Membership was already removed for this payout",
            code="ALREADY_REMOVED",
            current_state="removed",
        )
    return MembershipRemovalSchedule(scheduled_for=scheduled_for, scheduled_at=now, reason=REMOVAL_REASON), True


@dataclass(frozen=True)
class DueRemoval:
    payout_id: str
    user_id: str
    membership_id: str
    scheduled_for: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "payout_id": self.payout_id,
            "user_id": self.user_id,
            "membership_id": self.membership_id,
            "scheduled_for": self.scheduled_for.isoformat(),
        }


@dataclass(frozen=True)
class RemovalOutcome:
    user_id: str
    payout_id: str
    removed: bool
    already_removed: bool
    billing_cancelled: bool
    removed_at: Optional[datetime]


@dataclass
class SweepResult:
    due: int = 0
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"due": self.due, "removed": self.removed, "skipped": self.skipped, "failed": self.failed}


class MembershipLifecycle:
    def __init__(
        self,
        *,
        connect,
        payouts,
        memberships,
        billing: SubscriptionCanceller,
        notifier: NotificationSender,
        projection=None,
        removal_delay_months: int = 12,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._connect = connect
        self._payouts = payouts
        self._memberships = memberships
        self._billing = billing
        self._notifier = notifier
        self._projection = projection
        self._months = removal_delay_months
        self._clock = clock

    # ==========================================================
    # Scheduling
    # ==========================================================

    def apply_schedule(self, payout: Payout, completed_at: datetime, *, actor: str, now: datetime) -> MembershipRemovalSchedule:
        """In-transaction variant used by payment completion."""
        schedule, changed = plan_removal(payout, completed_at, now=now, months=self._months)
        if changed:
            payout.update_processing(membership_removal=schedule)
            payout.append_audit(
                "membership_removal_scheduled",
                actor,
                now,
                scheduled_for=schedule.scheduled_for.isoformat(),
            )
        return schedule

    def schedule_removal(self, user_id: str, completed_at: datetime, *, actor: str = SYSTEM_ACTOR) -> MembershipRemovalSchedule:
        with self._connect() as conn:
            payout = self._payouts.latest_completed_for_user(conn, user_id, for_update=True)
            if payout is None:
                raise NotFound(f"No completed payout for user {user_id}", code="NOT_FOUND")
            previous = payout.copy()
            now = self._clock()
            schedule = self.apply_schedule(payout, completed_at, actor=actor, now=now)
            if len(payout.audit_trail) != len(previous.audit_trail):
                payout.updated_at = now
                self._payouts.save(conn, payout, previous=previous)
        return schedule

    def check_due_removals(self, now: Optional[datetime] = None) -> list[DueRemoval]:
        at = now or self._clock()
        with self._connect() as conn:
            payouts = self._payouts.due_removals(conn, at)
        return [
            DueRemoval(
                payout_id=str(p.id),
                user_id=p.user_id,
                membership_id=p.membership_id,
                scheduled_for=p.processing.membership_removal.scheduled_for,
            )
            for p in payouts
        ]

    # ==========================================================
    # Removal
    # ==========================================================

    def remove_membership(self, user_id: str, *, actor: str = SYSTEM_ACTOR) -> RemovalOutcome:
        now = self._clock()
        with self._connect() as conn:
            payout = self._payouts.latest_completed_for_user(conn, user_id)
        if payout is None:
            raise NotFound(f"No completed payout for user {user_id}", code="NOT_FOUND")

        schedule = payout.processing.membership_removal
        if schedule is None:
            raise StateConflict("Membership removal is not scheduled", code="REMOVAL_NOT_SCHEDULED", current_state=payout.status)
        if schedule.removed:
            return RemovalOutcome(user_id, str(payout.id), False, True, False, schedule.removed_at)
        if schedule.scheduled_for > now:
            raise StateConflict(
                f"Membership removal is not due until {schedule.scheduled_for.isoformat()}",
                code="REMOVAL_NOT_DUE",
                current_state="scheduled",
            )

        # billing cancellation never blocks the removal
        billing_cancelled = False
        try:
            self._billing.cancel_subscription(user_id)
            billing_cancelled = True
        except (CollaboratorUnavailable, CollaboratorRejected) as e:
            logger.warning("billing cancellation failed user_id=%s err=%s", user_id, e)

        with self._connect() as conn:
            payout = self._payouts.lock(conn, payout.id)
            current = payout.processing.membership_removal
            if current is None or current.removed:
                return RemovalOutcome(user_id, str(payout.id), False, True, billing_cancelled, current.removed_at if current else None)

            previous = payout.copy()
            payout.update_processing(membership_removal=replace(current, removed=True, removed_at=now))
            payout.append_audit(
                "membership_removed",
                actor,
                now,
                billing_cancelled=billing_cancelled,
                scheduled_for=current.scheduled_for.isoformat(),
            )
            payout.updated_at = now

            member = self._memberships.get_by_user(conn, user_id, for_update=True)
            if member is not None:
                self._memberships.set_status(conn, str(member["id"]), MEMBER_INACTIVE)
            self._payouts.save(conn, payout, previous=previous)

        logger.info("membership removed user_id=%s payout_id=%s billing_cancelled=%s", user_id, payout.id, billing_cancelled)
        self._notify(user_id, MEMBERSHIP_REMOVED, {"payout_id": str(payout.id), "removed_at": now.isoformat()})
        return RemovalOutcome(user_id, str(payout.id), True, False, billing_cancelled, now)

    def run_removal_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        due = self.check_due_removals(now)
        result = SweepResult(due=len(due))
        for item in due:
            try:
                outcome = self.remove_membership(item.user_id)
            except Exception as e:
                logger.exception("membership removal failed user_id=%s payout_id=%s", item.user_id, item.payout_id)
                result.failed.append({"user_id": item.user_id, "payout_id": item.payout_id, "error": type(e).__name__})
                continue
            if outcome.removed:
                result.removed.append(item.user_id)
            else:
                result.skipped.append(item.user_id)
        return result

    # ==========================================================
    # Reactivation
    # ==========================================================

    def reactivate_membership(self, user_id: str, new_payment_date: datetime, *, actor: str = SYSTEM_ACTOR) -> dict[str, Any]:
        """
        Restarts tenure at `new_payment_date`. The ranking picks the member up
        again on its next read; nothing here touches queue positions.
        """
        now = self._clock()
        if new_payment_date > now:
            raise ValidationError("new_payment_date cannot be in the future", code="INVALID_DATE")

        with self._connect() as conn:
            # payout row first, then membership: same order as completion and removal
            payout = self._payouts.latest_completed_for_user(conn, user_id, for_update=True)
            member = self._memberships.get_by_user(conn, user_id, for_update=True)
            if member is None:
                raise NotFound(f"No membership for user {user_id}", code="NOT_FOUND")
            if member["member_status"] != MEMBER_INACTIVE:
                raise StateConflict(
                    "Only removed memberships can be reactivated",
                    code="MEMBERSHIP_NOT_REMOVED",
                    current_state=member["member_status"],
                )

            if payout is not None and payout.processing.membership_removal is not None:
                previous = payout.copy()
                payout.update_processing(
                    membership_removal=replace(
                        payout.processing.membership_removal,
                        reactivated_at=now,
                        new_tenure_start=new_payment_date,
                    )
                )
                payout.append_audit(
                    "membership_reactivated",
                    actor,
                    now,
                    new_tenure_start=new_payment_date.isoformat(),
                )
                payout.updated_at = now
                self._payouts.save(conn, payout, previous=previous)

            self._memberships.restart_tenure(conn, str(member["id"]), new_payment_date, MEMBER_ACTIVE)

        logger.info("membership reactivated user_id=%s tenure_start=%s", user_id, new_payment_date.isoformat())
        self._notify(user_id, MEMBERSHIP_REACTIVATED, {"tenure_started_at": new_payment_date.isoformat()})
        return {
            "user_id": str(user_id),
            "membership_id": str(member["id"]),
            "member_status": MEMBER_ACTIVE,
            "tenure_started_at": new_payment_date,
            "reactivated_at": now,
        }

    def membership_status(self, user_id: str) -> dict[str, Any]:
        with self._connect() as conn:
            member = self._memberships.get_by_user(conn, user_id)
            if member is None:
                raise NotFound(f"No membership for user {user_id}", code="NOT_FOUND")
            payout = self._payouts.latest_completed_for_user(conn, user_id)

        removal = payout.processing.membership_removal if payout else None
        candidate = self._projection.position_of(user_id) if self._projection is not None else None
        return {
            "user_id": str(user_id),
            "membership_id": str(member["id"]),
            "member_status": member["member_status"],
            "tenure_started_at": member.get("tenure_started_at"),
            "queue_rank": candidate.queue_rank if candidate else None,
            "is_eligible": candidate.is_eligible if candidate else False,
            "last_payout_id": str(payout.id) if payout else None,
            "removal": removal.to_dict() if removal else None,
        }

    def _notify(self, user_id: str, template: str, data: dict[str, Any]) -> None:
        try:
            self._notifier.send(user_id, template, data)
        except Exception:
            logger.exception("notification failed user_id=%s template=%s", user_id, template)
