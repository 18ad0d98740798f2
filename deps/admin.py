

# deps/admin.py
import logging

from fastapi import Depends, HTTPException, status

from deps.auth import get_current_user, CurrentUser
from settings import settings

logger = logging.getLogger("tenure.auth")


def require_staff(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Any approver role (admin or finance_manager by default)."""
    if not user.has_any_role(*settings.approver_roles()):
        logger.warning("staff access denied user_id=%s roles=%s", user.user_id, sorted(user.roles))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN", "message": "Staff role required"},
        )
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.has_any_role("admin"):
        logger.warning("admin access denied user_id=%s roles=%s", user.user_id, sorted(user.roles))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "ADMIN_REQUIRED", "message": "Admin role required"},
        )
    return user
