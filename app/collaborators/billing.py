# app/collaborators/billing.py
from __future__ import annotations

from app.collaborators.http import CollaboratorUnavailable, HttpClient


class BillingClient:
    """Remote billing / subscription service."""

    def __init__(self, http: HttpClient):
        self._http = http

    def get_total_revenue_cents(self) -> int:
        resp = self._http.get("/v1/revenue/total")
        body = resp.json or {}
        value = body.get("total_cents")
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            # a malformed answer is treated like an outage so the ledger fallback kicks in
            raise CollaboratorUnavailable(self._http.service, "malformed revenue payload")
        return value

    def cancel_subscription(self, user_id: str) -> None:
        self._http.post(f"/v1/subscriptions/{user_id}/cancel", json_body={"reason": "payout_tenure_reset"})
