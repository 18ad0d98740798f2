# tests/fakes.py
"""
In-memory stand-ins for the Postgres repositories and the HTTP collaborators.

Writes are staged on the connection and applied on a clean exit, so a
transaction that raises leaves the store untouched. `lock()` style reads take
a per-row threading.Lock that is held until the connection closes, which is
how FOR UPDATE behaves.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

import psycopg2

from app.approvals.service import ApprovalService
from app.approvals.workflow import ApprovalPolicy
from app.clock import add_months
from app.eligibility.evaluator import EligibilityConfig, EligibilityEvaluator
from app.engine import Engine
from app.membership.lifecycle import MembershipLifecycle
from app.payments.bank_details import BankDetails
from app.payments.processor import PaymentConfig, PaymentProcessor
from app.payouts.model import Payout
from app.payouts.repository import AuditTrailRewrite
from app.payouts.service import PayoutQueries
from app.payouts.state_machine import COMPLETED, FUNDED_STATUSES, OPEN_STATUSES
from app.queue.projection import QueueProjection
from app.queue.ranking import MemberFacts
from app.winners.selector import WinnerSelector
from services.idempotency import StoredResponse, resolve_existing

LOCK_WAIT_S = 5


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ==========================================================
# Store + connection
# ==========================================================

class FakeConn:
    def __init__(self, store: "FakeStore", snapshot: bool):
        self.store = store
        self.snapshot = snapshot
        self._held: list[threading.Lock] = []
        self._writes: list[Callable[[], None]] = []

    def __enter__(self):
        if self.snapshot:
            self.store.snapshot_reads += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                with self.store.guard:
                    for write in self._writes:
                        write()
        finally:
            for lk in reversed(self._held):
                lk.release()
            self._held.clear()
        return False

    def lock_row(self, key) -> None:
        lk = self.store.row_lock(key)
        if lk in self._held:
            return
        if not lk.acquire(timeout=LOCK_WAIT_S):
            raise RuntimeError(f"lock wait timeout on {key!r}")
        self._held.append(lk)

    def defer(self, write: Callable[[], None]) -> None:
        self._writes.append(write)


class FakeStore:
    def __init__(self):
        self.memberships: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, str] = {}
        self.kyc: dict[str, str] = {}
        self.tax_forms: dict[str, Optional[datetime]] = {}
        self.bank_details: dict[str, str] = {}
        self.addresses: dict[str, dict[str, Any]] = {}
        self.payments: list[dict[str, Any]] = []
        self.payouts: dict[uuid.UUID, Payout] = {}
        self.audit_log: list[dict[str, Any]] = []
        self.alerts: list[dict[str, Any]] = []
        self.idempotency_keys: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.ledger_error: Optional[Exception] = None
        self.snapshot_reads = 0
        self.guard = threading.RLock()
        self._row_locks: dict[Any, threading.Lock] = {}

    def connect(self, *, snapshot: bool = False) -> FakeConn:
        return FakeConn(self, snapshot)

    def row_lock(self, key) -> threading.Lock:
        with self.guard:
            if key not in self._row_locks:
                self._row_locks[key] = threading.Lock()
            return self._row_locks[key]

    # -------- seeding --------

    def add_member(
        self,
        *,
        first_paid_at: datetime,
        payments: int = 12,
        monthly_cents: int = 2_500,
        member_status: str = "active",
        subscription: Optional[str] = "active",
        kyc: Optional[str] = "verified",
        tenure_started_at: Optional[datetime] = None,
        membership_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> tuple[str, str]:
        mid = membership_id or str(uuid.uuid4())
        uid = user_id or str(uuid.uuid4())
        self.memberships[mid] = {
            "id": mid,
            "user_id": uid,
            "member_status": member_status,
            "tenure_started_at": tenure_started_at,
            "created_at": first_paid_at,
        }
        if subscription is not None:
            self.subscriptions[uid] = subscription
        if kyc is not None:
            self.kyc[uid] = kyc
        for i in range(payments):
            self.add_payment(uid, add_months(first_paid_at, i), monthly_cents)
        return mid, uid

    def add_payment(self, user_id: str, at: datetime, amount_cents: int, status: str = "succeeded") -> None:
        self.payments.append({"user_id": user_id, "created_at": at, "amount_cents": amount_cents, "status": status})

    def set_bank_details(self, user_id: str, cipher, details: Optional[BankDetails] = None) -> None:
        details = details or BankDetails(
            account_holder="Dana Member",
            bank_name="First Example Bank",
            routing_number="021000021",
            account_number="000123456789",
        )
        self.bank_details[user_id] = cipher.encrypt(details)

    def set_address(self, user_id: str) -> None:
        self.addresses[user_id] = {
            "full_name": "Dana Member",
            "line1": "12 Elm Street",
            "line2": None,
            "city": "Springfield",
            "region": "IL",
            "postal_code": "62701",
            "country": "US",
        }

    def stored(self, payout_id) -> Payout:
        return self.payouts[uuid.UUID(str(payout_id))]


def _clone(p: Payout) -> Payout:
    return p.copy()


# ==========================================================
# Repositories
# ==========================================================

class FakePayoutRepository:
    def __init__(self, store: FakeStore):
        self._s = store

    def insert(self, conn: FakeConn, payout: Payout) -> None:
        with self._s.guard:
            clash = any(
                p.membership_id == payout.membership_id and p.status in OPEN_STATUSES
                for p in self._s.payouts.values()
            )
        if clash:
            raise psycopg2.IntegrityError("duplicate key value violates unique constraint \"ux_payouts_open_membership\"")
        saved = _clone(payout)
        conn.defer(lambda: self._s.payouts.__setitem__(saved.id, saved))

    def save(self, conn: FakeConn, payout: Payout, *, previous: Payout) -> None:
        old_len = len(previous.audit_trail)
        if payout.audit_trail[:old_len] != previous.audit_trail:
            raise AuditTrailRewrite(f"audit trail of payout {payout.id} would be rewritten")
        with self._s.guard:
            current = self._s.payouts.get(payout.id)
            if current is None or len(current.audit_trail) != old_len:
                raise AuditTrailRewrite(f"payout {payout.id} changed concurrently")
            snapshot = current.eligibility_snapshot
        saved = replace(_clone(payout), eligibility_snapshot=snapshot)
        conn.defer(lambda: self._s.payouts.__setitem__(saved.id, saved))

    def get(self, conn, payout_id) -> Optional[Payout]:
        with self._s.guard:
            p = self._s.payouts.get(payout_id)
            return _clone(p) if p else None

    def lock(self, conn: FakeConn, payout_id) -> Optional[Payout]:
        conn.lock_row(("payout", payout_id))
        return self.get(conn, payout_id)

    def list_payouts(self, conn, *, status=None, user_id=None, limit=50, offset=0) -> list[Payout]:
        with self._s.guard:
            rows = [
                _clone(p)
                for p in self._s.payouts.values()
                if (status is None or p.status == status) and (user_id is None or p.user_id == str(user_id))
            ]
        rows.sort(key=lambda p: (p.created_at, str(p.id)), reverse=True)
        return rows[offset: offset + limit]

    def lock_funding(self, conn: FakeConn) -> None:
        conn.lock_row(("funding",))

    def count_funded(self, conn) -> int:
        with self._s.guard:
            return sum(1 for p in self._s.payouts.values() if p.status in FUNDED_STATUSES)

    def has_open_payout(self, conn, membership_id: str) -> bool:
        with self._s.guard:
            return any(
                p.membership_id == str(membership_id) and p.status in OPEN_STATUSES
                for p in self._s.payouts.values()
            )

    def due_removals(self, conn, now: datetime) -> list[Payout]:
        with self._s.guard:
            due = [
                _clone(p)
                for p in self._s.payouts.values()
                if p.status == COMPLETED
                and p.processing.membership_removal is not None
                and not p.processing.membership_removal.removed
                and p.processing.membership_removal.scheduled_for <= now
            ]
        due.sort(key=lambda p: (p.processing.membership_removal.scheduled_for, str(p.id)))
        return due

    def latest_completed_for_user(self, conn: FakeConn, user_id: str, *, for_update: bool = False) -> Optional[Payout]:
        with self._s.guard:
            done = [p for p in self._s.payouts.values() if p.user_id == str(user_id) and p.status == COMPLETED]
        if not done:
            return None
        latest = max(done, key=lambda p: p.updated_at)
        if for_update:
            return self.lock(conn, latest.id)
        return _clone(latest)


class FakeIdempotencyKeys:
    """Reservation is applied immediately under the store guard, like a committed INSERT."""

    def __init__(self, store: FakeStore):
        self._s = store

    def reserve(self, conn, *, actor, key, route_key, body_hash) -> Optional[StoredResponse]:
        with self._s.guard:
            row = self._s.idempotency_keys.get((actor, key, route_key))
            if row is None:
                self._s.idempotency_keys[(actor, key, route_key)] = {
                    "request_hash": body_hash,
                    "response_json": None,
                    "status_code": 200,
                }
                return None
            row = dict(row)
        return resolve_existing(row, body_hash=body_hash)

    def complete(self, conn, *, actor, key, route_key, body, status_code) -> None:
        def write():
            row = self._s.idempotency_keys.get((actor, key, route_key))
            if row is not None and row["response_json"] is None:
                row.update(response_json=body, status_code=int(status_code))

        conn.defer(write)

    def release(self, conn, *, actor, key, route_key) -> None:
        def write():
            row = self._s.idempotency_keys.get((actor, key, route_key))
            if row is not None and row["response_json"] is None:
                del self._s.idempotency_keys[(actor, key, route_key)]

        conn.defer(write)


class FakeMembershipRepository:
    def __init__(self, store: FakeStore):
        self._s = store

    def lock(self, conn: FakeConn, membership_id: str) -> Optional[dict[str, Any]]:
        conn.lock_row(("membership", str(membership_id)))
        with self._s.guard:
            row = self._s.memberships.get(str(membership_id))
            return dict(row) if row else None

    def get_by_user(self, conn: FakeConn, user_id: str, *, for_update: bool = False) -> Optional[dict[str, Any]]:
        with self._s.guard:
            rows = [m for m in self._s.memberships.values() if m["user_id"] == str(user_id)]
        if not rows:
            return None
        row = max(rows, key=lambda m: m["created_at"])
        if for_update:
            return self.lock(conn, row["id"])
        return dict(row)

    def set_status(self, conn: FakeConn, membership_id: str, status: str) -> None:
        def write():
            self._s.memberships[str(membership_id)]["member_status"] = status

        conn.defer(write)

    def restart_tenure(self, conn: FakeConn, membership_id: str, started_at: datetime, status: str) -> None:
        def write():
            row = self._s.memberships[str(membership_id)]
            row["member_status"] = status
            row["tenure_started_at"] = started_at

        conn.defer(write)


class FakeProfileRepository:
    def __init__(self, store: FakeStore):
        self._s = store

    def kyc_status(self, conn, user_id: str) -> Optional[str]:
        return self._s.kyc.get(str(user_id))

    def subscription_status(self, conn, user_id: str) -> Optional[str]:
        return self._s.subscriptions.get(str(user_id))

    def has_valid_tax_form(self, conn, user_id: str, at: datetime) -> bool:
        if str(user_id) not in self._s.tax_forms:
            return False
        expires_at = self._s.tax_forms[str(user_id)]
        return expires_at is None or expires_at > at

    def encrypted_bank_details(self, conn, user_id: str) -> Optional[str]:
        return self._s.bank_details.get(str(user_id))

    def primary_address(self, conn, user_id: str) -> Optional[dict[str, Any]]:
        row = self._s.addresses.get(str(user_id))
        return dict(row) if row else None

    def preferred_payment_method(self, conn, user_id: str) -> str:
        return "ach" if str(user_id) in self._s.bank_details else "check"


class FakeQueueRepository:
    def __init__(self, store: FakeStore):
        self._s = store

    def load_member_facts(self, conn) -> list[MemberFacts]:
        with self._s.guard:
            memberships = [dict(m) for m in self._s.memberships.values()]
            payments = list(self._s.payments)
            payouts = list(self._s.payouts.values())

        out = []
        for m in memberships:
            tenure = m["tenure_started_at"]
            qualifying = sorted(
                p["created_at"]
                for p in payments
                if p["user_id"] == m["user_id"]
                and p["status"] == "succeeded"
                and p["amount_cents"] > 0
                and (tenure is None or p["created_at"] >= tenure)
            )
            total = sum(
                p["amount_cents"]
                for p in payments
                if p["user_id"] == m["user_id"]
                and p["status"] == "succeeded"
                and p["amount_cents"] > 0
                and (tenure is None or p["created_at"] >= tenure)
            )
            paid = any(
                po.membership_id == m["id"]
                and po.status == COMPLETED
                and (tenure is None or po.created_at >= tenure)
                for po in payouts
            )
            out.append(
                MemberFacts(
                    membership_id=m["id"],
                    user_id=m["user_id"],
                    member_status=m["member_status"],
                    subscription_status=self._s.subscriptions.get(m["user_id"]),
                    first_qualifying_payment_at=qualifying[0] if qualifying else None,
                    last_payment_at=qualifying[-1] if qualifying else None,
                    successful_payments=len(qualifying),
                    lifetime_total_cents=total,
                    has_received_payout=paid,
                    tenure_started_at=tenure,
                )
            )
        return out

    def local_revenue_cents(self, conn) -> int:
        if self._s.ledger_error is not None:
            raise self._s.ledger_error
        return sum(p["amount_cents"] for p in self._s.payments if p["status"] == "succeeded")


# ==========================================================
# Collaborators
# ==========================================================

class FakeBilling:
    def __init__(self, revenue_cents: int = 25_000_000):
        self.revenue_cents = revenue_cents
        self.error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.cancelled: list[str] = []

    def get_total_revenue_cents(self) -> int:
        if self.error is not None:
            raise self.error
        return self.revenue_cents

    def cancel_subscription(self, user_id: str) -> None:
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(str(user_id))


class FakeNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.error: Optional[Exception] = None

    def send(self, recipient: str, template: str, data: dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((str(recipient), template, data))

    def templates(self) -> list[str]:
        return [t for _, t, _ in self.sent]


class FakeDocuments:
    def __init__(self):
        self.rendered: list[tuple[str, dict[str, Any]]] = []
        self.error: Optional[Exception] = None

    def render(self, template: str, data: dict[str, Any]) -> str:
        if self.error is not None:
            raise self.error
        self.rendered.append((template, data))
        return f"https://docs.example.test/{template}/{len(self.rendered)}.pdf"


# ==========================================================
# Wiring
# ==========================================================

DEFAULT_CONFIG = EligibilityConfig(
    launch_date=date(2024, 1, 1),
    revenue_threshold_cents=10_000_000,
    age_threshold_months=12,
    payout_amount_cents=10_000_000,
)

DEFAULT_POLICY = ApprovalPolicy(threshold_cents=10_000_000)

DEFAULT_PAYMENT_CONFIG = PaymentConfig(retention_fee_cents=30_000, tax_rate=Decimal("0.24"))


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def build_test_engine(
    store: FakeStore,
    *,
    clock: FakeClock,
    billing: FakeBilling,
    notifier: FakeNotifier,
    documents: FakeDocuments,
    cipher,
    config: EligibilityConfig = DEFAULT_CONFIG,
    policy: ApprovalPolicy = DEFAULT_POLICY,
    payment_config: PaymentConfig = DEFAULT_PAYMENT_CONFIG,
    min_payments: int = 12,
) -> Engine:
    connect = store.connect
    payouts = FakePayoutRepository(store)
    memberships = FakeMembershipRepository(store)
    profiles = FakeProfileRepository(store)
    queue_repo = FakeQueueRepository(store)

    def audit(conn, **entry):
        store.audit_log.append(entry)

    def alert(conn, **entry):
        store.alerts.append(entry)

    projection = QueueProjection(connect=connect, repo=queue_repo, min_payments=min_payments)
    evaluator = EligibilityEvaluator(
        connect=connect,
        queue_repo=queue_repo,
        projection=projection,
        billing=billing,
        config=config,
        clock=clock,
        audit=audit,
        alert=alert,
    )
    lifecycle = MembershipLifecycle(
        connect=connect,
        payouts=payouts,
        memberships=memberships,
        billing=billing,
        notifier=notifier,
        projection=projection,
        clock=clock,
    )
    return Engine(
        projection=projection,
        eligibility=evaluator,
        winners=WinnerSelector(
            connect=connect,
            projection=projection,
            evaluator=evaluator,
            payouts=payouts,
            memberships=memberships,
            profiles=profiles,
            policy=policy,
            payout_amount_cents=config.payout_amount_cents,
            currency="USD",
            clock=clock,
        ),
        approvals=ApprovalService(connect=connect, payouts=payouts, notifier=notifier, policy=policy, clock=clock),
        payments=PaymentProcessor(
            connect=connect,
            payouts=payouts,
            memberships=memberships,
            profiles=profiles,
            documents=documents,
            notifier=notifier,
            lifecycle=lifecycle,
            cipher_factory=lambda: cipher,
            config=payment_config,
            clock=clock,
        ),
        membership=lifecycle,
        payouts=PayoutQueries(connect=connect, payouts=payouts),
        connect=connect,
        idempotency=FakeIdempotencyKeys(store),
    )
