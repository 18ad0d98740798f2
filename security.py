
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from jose import jwt, JWTError

from settings import settings

# -----------------------
# Access tokens (JWT)
# -----------------------
# Tokens are issued by the identity provider; create_access_token exists for
# service-to-service calls and local tooling.

def create_access_token(sub: str, roles: Iterable[str] = (), minutes: Optional[int] = None) -> str:
    exp_minutes = minutes or settings.JWT_ACCESS_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(sub),
        "roles": sorted({r.strip().lower() for r in roles if r and r.strip()}),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return {}

def roles_from_claims(payload: Dict[str, Any]) -> frozenset[str]:
    raw = payload.get("roles") or []
    if isinstance(raw, str):
        raw = raw.split(",")
    return frozenset(str(r).strip().lower() for r in raw if str(r).strip())
