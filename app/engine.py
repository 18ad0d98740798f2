# app/engine.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from db import get_conn
from app.approvals.service import ApprovalService
from app.approvals.workflow import ApprovalPolicy
from app.collaborators.billing import BillingClient
from app.collaborators.documents import DocumentClient
from app.collaborators.http import HttpClient
from app.collaborators.notifications import NotificationClient
from app.eligibility.evaluator import EligibilityConfig, EligibilityEvaluator
from app.membership.lifecycle import MembershipLifecycle
from app.membership.repository import MemberProfileRepository, MembershipRepository
from app.payments.bank_details import BankDetailsCipher
from app.payments.processor import PaymentConfig, PaymentProcessor
from app.payouts.repository import PayoutRepository
from app.payouts.service import PayoutQueries
from app.queue.projection import QueueProjection
from app.queue.repository import QueueRepository
from app.winners.selector import WinnerSelector
from services.idempotency import IdempotencyKeys


@dataclass
class Engine:
    projection: QueueProjection
    eligibility: EligibilityEvaluator
    winners: WinnerSelector
    approvals: ApprovalService
    payments: PaymentProcessor
    membership: MembershipLifecycle
    payouts: PayoutQueries
    connect: Callable[..., Any] = get_conn
    idempotency: IdempotencyKeys = field(default_factory=IdempotencyKeys)
    clients: tuple[HttpClient, ...] = ()

    def close(self) -> None:
        for c in self.clients:
            c.close()


def build_engine(
    settings,
    *,
    connect=None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Engine:
    """
    Wires every component once per process. `transport` lets tests route all
    collaborator traffic through an httpx.MockTransport.
    """
    if connect is None:
        connect = get_conn

    billing_http = HttpClient(
        "billing",
        settings.BILLING_SERVICE_URL,
        timeout_s=settings.BILLING_HTTP_TIMEOUT_S,
        api_key=settings.SERVICE_API_KEY,
        transport=transport,
    )
    notify_http = HttpClient(
        "notifications",
        settings.NOTIFICATION_SERVICE_URL,
        timeout_s=settings.NOTIFICATION_HTTP_TIMEOUT_S,
        api_key=settings.SERVICE_API_KEY,
        transport=transport,
    )
    docs_http = HttpClient(
        "documents",
        settings.DOCUMENT_SERVICE_URL,
        timeout_s=settings.DOCUMENT_HTTP_TIMEOUT_S,
        api_key=settings.SERVICE_API_KEY,
        transport=transport,
    )
    billing = BillingClient(billing_http)
    notifier = NotificationClient(notify_http)
    documents = DocumentClient(docs_http)

    queue_repo = QueueRepository()
    payout_repo = PayoutRepository()
    membership_repo = MembershipRepository()
    profile_repo = MemberProfileRepository()
    policy = ApprovalPolicy.from_settings(settings)

    projection = QueueProjection(connect=connect, repo=queue_repo, min_payments=settings.MIN_QUALIFYING_PAYMENTS)
    evaluator = EligibilityEvaluator(
        connect=connect,
        queue_repo=queue_repo,
        projection=projection,
        billing=billing,
        config=EligibilityConfig.from_settings(settings),
    )
    lifecycle = MembershipLifecycle(
        connect=connect,
        payouts=payout_repo,
        memberships=membership_repo,
        billing=billing,
        notifier=notifier,
        projection=projection,
        removal_delay_months=settings.REMOVAL_DELAY_MONTHS,
    )
    return Engine(
        projection=projection,
        eligibility=evaluator,
        winners=WinnerSelector(
            connect=connect,
            projection=projection,
            evaluator=evaluator,
            payouts=payout_repo,
            memberships=membership_repo,
            profiles=profile_repo,
            policy=policy,
            payout_amount_cents=settings.PAYOUT_AMOUNT_CENTS,
            currency=settings.PAYOUT_CURRENCY,
        ),
        approvals=ApprovalService(connect=connect, payouts=payout_repo, notifier=notifier, policy=policy),
        payments=PaymentProcessor(
            connect=connect,
            payouts=payout_repo,
            memberships=membership_repo,
            profiles=profile_repo,
            documents=documents,
            notifier=notifier,
            lifecycle=lifecycle,
            cipher_factory=lambda: BankDetailsCipher(settings.BANK_DETAILS_KEY),
            config=PaymentConfig.from_settings(settings),
        ),
        membership=lifecycle,
        payouts=PayoutQueries(connect=connect, payouts=payout_repo),
        connect=connect,
        idempotency=IdempotencyKeys(),
        clients=(billing_http, notify_http, docs_http),
    )
