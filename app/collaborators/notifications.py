# app/collaborators/notifications.py
from __future__ import annotations

from typing import Any

from app.collaborators.http import HttpClient

PAYOUT_APPROVED = "payout_approved"
PAYOUT_REJECTED = "payout_rejected"
PAYOUT_COMPLETED = "payout_completed"
MEMBERSHIP_REMOVED = "membership_removed"
MEMBERSHIP_REACTIVATED = "membership_reactivated"


class NotificationClient:
    def __init__(self, http: HttpClient):
        self._http = http

    def send(self, recipient: str, template: str, data: dict[str, Any]) -> None:
        self._http.post(
            "/v1/notifications",
            json_body={"recipient": str(recipient), "template": template, "data": data},
        )
