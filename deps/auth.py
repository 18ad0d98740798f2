

# deps/auth.py
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from security import decode_token, roles_from_claims

bearer = HTTPBearer(auto_error=False)

class CurrentUser:
    def __init__(self, user_id: str, roles: frozenset[str] = frozenset()):
        self.user_id = user_id
        self.roles = roles

    def has_any_role(self, *roles: str) -> bool:
        return any(r in self.roles for r in roles)

def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> CurrentUser:
    if not creds:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    # must be "Bearer"
    if (creds.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    payload = decode_token(creds.credentials)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    return CurrentUser(user_id=str(sub), roles=roles_from_claims(payload))
