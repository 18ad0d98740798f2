# app/collaborators/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger("tenure.http")


class CollaboratorUnavailable(Exception):
    """Transport error, timeout, or a transient HTTP status from a collaborator."""

    def __init__(self, service: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class CollaboratorRejected(Exception):
    """Collaborator answered with a non-retryable error status."""

    def __init__(self, service: str, status_code: int, text: str):
        super().__init__(f"{service}: HTTP {status_code}")
        self.service = service
        self.status_code = status_code
        self.text = text


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


def is_retryable_http(code: int) -> bool:
    # Retry transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)


class HttpClient:
    def __init__(
        self,
        service: str,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        api_key: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.service = service
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Api-Key"] = api_key
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_s,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def post(self, path: str, *, json_body: dict[str, Any] | None = None) -> HttpResponse:
        return self._send("POST", path, json_body)

    def get(self, path: str) -> HttpResponse:
        return self._send("GET", path, None)

    def _send(self, method: str, path: str, json_body: Any) -> HttpResponse:
        try:
            r = self._client.request(method, path, json=json_body)
        except httpx.HTTPError as e:
            logger.warning("collaborator call failed service=%s %s %s err=%s", self.service, method, path, type(e).__name__)
            raise CollaboratorUnavailable(self.service, type(e).__name__) from e

        resp = self._wrap(r)
        if is_retryable_http(r.status_code):
            logger.warning("collaborator unavailable service=%s %s %s status=%s", self.service, method, path, r.status_code)
            raise CollaboratorUnavailable(self.service, f"HTTP {r.status_code}", status_code=r.status_code)
        if r.status_code >= 400:
            logger.warning("collaborator rejected service=%s %s %s status=%s", self.service, method, path, r.status_code)
            raise CollaboratorRejected(self.service, r.status_code, r.text[:300])
        return resp

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if payload is not None and not isinstance(payload, dict):
            payload = {"data": payload}
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)
