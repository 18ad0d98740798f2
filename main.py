
#main.py
import logging
from contextlib import asynccontextmanager

import psycopg2
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from settings import settings
from db import close_pool
from middleware import RequestContextMiddleware
from app.engine import build_engine
from app.errors import PayoutEngineError
from app.payouts.repository import AuditTrailRewrite
from routes.payouts import router as payouts_router
from routes.eligibility import router as eligibility_router
from routes.memberships import router as memberships_router
from routes.health import router as health_router
from services.http_errors import http_exception_for
from services.observability import configure_logging

logger = logging.getLogger("tenure.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(settings)
    try:
        yield
    finally:
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            engine.close()
        close_pool()


app = FastAPI(title="Tenure Payouts API", version="1.0.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)

# -----------------------------
# ROUTERS
# -----------------------------

app.include_router(health_router)
app.include_router(payouts_router)
app.include_router(eligibility_router)
app.include_router(memberships_router)


def _error_response(exc: Exception) -> JSONResponse:
    http = http_exception_for(exc)
    return JSONResponse(status_code=http.status_code, content={"detail": http.detail})


@app.exception_handler(PayoutEngineError)
async def engine_error_handler(request: Request, exc: PayoutEngineError):
    if exc.kind == "authorization":
        logger.warning("forbidden path=%s code=%s", request.url.path, exc.code)
    return _error_response(exc)


@app.exception_handler(AuditTrailRewrite)
async def audit_conflict_handler(request: Request, exc: AuditTrailRewrite):
    logger.warning("concurrent payout modification path=%s err=%s", request.url.path, exc)
    return _error_response(exc)


@app.exception_handler(psycopg2.Error)
async def db_error_handler(request: Request, exc: psycopg2.Error):
    logger.error("database error path=%s pgcode=%s", request.url.path, getattr(exc, "pgcode", None), exc_info=exc)
    return _error_response(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
