
# deps/engine.py
from fastapi import HTTPException, Request

from app.engine import Engine


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail={"code": "NOT_READY", "message": "Service is starting"})
    return engine
