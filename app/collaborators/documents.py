# app/collaborators/documents.py
from __future__ import annotations

from typing import Any

from app.collaborators.http import CollaboratorUnavailable, HttpClient

PAYMENT_INSTRUCTIONS_TEMPLATE = "payout_payment_instructions"
RECEIPT_TEMPLATE = "payout_receipt"


class DocumentClient:
    """Renders a template to PDF and returns the stored content URL."""

    def __init__(self, http: HttpClient):
        self._http = http

    def render(self, template: str, data: dict[str, Any]) -> str:
        resp = self._http.post("/v1/documents/render", json_body={"template": template, "data": data})
        url = (resp.json or {}).get("url")
        if not url:
            raise CollaboratorUnavailable(self._http.service, "render returned no url")
        return str(url)
