# app/collaborators/base.py
from __future__ import annotations

from typing import Any, Protocol


class RevenueSource(Protocol):
    def get_total_revenue_cents(self) -> int: ...


class SubscriptionCanceller(Protocol):
    def cancel_subscription(self, user_id: str) -> None: ...


class NotificationSender(Protocol):
    def send(self, recipient: str, template: str, data: dict[str, Any]) -> None: ...


class DocumentRenderer(Protocol):
    def render(self, template: str, data: dict[str, Any]) -> str: ...
