
# services/http_errors.py
from __future__ import annotations

import psycopg2
from fastapi import HTTPException

from app.errors import (
    DependencyFailure,
    Forbidden,
    NotFound,
    PaymentPrerequisiteError,
    PayoutEngineError,
    StateConflict,
    ValidationError,
)
from app.payouts.repository import AuditTrailRewrite

ENGINE_ERROR_HTTP_MAP: dict[type, int] = {
    PaymentPrerequisiteError: 422,
    ValidationError: 422,
    StateConflict: 409,
    Forbidden: 403,
    NotFound: 404,
    DependencyFailure: 503,
}

# SQLSTATEs that mean "try again": lock_not_available, serialization_failure,
# deadlock_detected, query_canceled (statement_timeout)
PG_RETRYABLE: dict[str, tuple[int, str, str]] = {
    "55P03": (409, "LOCK_TIMEOUT", "Resource is busy, retry"),
    "40001": (409, "SERIALIZATION_FAILURE", "Concurrent update, retry"),
    "40P01": (409, "DEADLOCK", "Concurrent update, retry"),
    "57014": (503, "STATEMENT_TIMEOUT", "Database timeout, retry"),
}


def status_for(exc: PayoutEngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ENGINE_ERROR_HTTP_MAP:
            return ENGINE_ERROR_HTTP_MAP[cls]
    return 500


def http_exception_for(exc: Exception) -> HTTPException:
    """
    Convert known engine / DB errors into HTTP responses; otherwise fail closed
    with a generic 500.
    """
    if isinstance(exc, PayoutEngineError):
        return HTTPException(status_code=status_for(exc), detail=exc.to_dict())

    if isinstance(exc, AuditTrailRewrite):
        return HTTPException(
            status_code=409,
            detail={"code": "CONCURRENT_MODIFICATION", "message": "Payout changed concurrently, retry", "retryable": True},
        )

    if isinstance(exc, psycopg2.Error):
        code = getattr(exc, "pgcode", None)
        if code in PG_RETRYABLE:
            status, err_code, message = PG_RETRYABLE[code]
            return HTTPException(status_code=status, detail={"code": err_code, "message": message, "retryable": True})
        if isinstance(exc, psycopg2.OperationalError):
            return HTTPException(
                status_code=503,
                detail={"code": "DATABASE_UNAVAILABLE", "message": "Database unavailable, retry", "retryable": True},
            )

    return HTTPException(status_code=500, detail="Internal server error")

