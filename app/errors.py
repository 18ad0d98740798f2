# app/errors.py
from __future__ import annotations

from typing import Any, Optional


class PayoutEngineError(Exception):
    """Base class for every error the workflow engine raises on purpose."""

    kind = "system"
    default_code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.retryable:
            out["retryable"] = True
        out.update(self.details)
        return out


class ValidationError(PayoutEngineError):
    kind = "validation"
    default_code = "VALIDATION_ERROR"


class StateConflict(PayoutEngineError):
    kind = "state_conflict"
    default_code = "INVALID_STATE"

    def __init__(self, message: str, *, current_state: Optional[str] = None, code: Optional[str] = None, details=None):
        merged = dict(details or {})
        if current_state is not None:
            merged["current_state"] = current_state
        super().__init__(message, code=code, details=merged)
        self.current_state = current_state


class Forbidden(PayoutEngineError):
    kind = "authorization"
    default_code = "FORBIDDEN"


class NotFound(PayoutEngineError):
    kind = "not_found"
    default_code = "NOT_FOUND"


class DependencyFailure(PayoutEngineError):
    """A collaborator on the critical path is unavailable; the caller may retry."""

    kind = "dependency_failure"
    default_code = "DEPENDENCY_UNAVAILABLE"
    retryable = True


class PaymentPrerequisiteError(PayoutEngineError):
    """Bank details / mailing address missing or unreadable. Retrying will not help."""

    kind = "validation"
    default_code = "PAYMENT_PREREQUISITE_MISSING"
