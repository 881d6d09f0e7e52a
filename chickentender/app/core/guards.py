"""
Authorization gate.

Every privileged operation declares the Permission it needs through
require_permission; there are no other permission checks.
"""

from fastapi import Depends

from chickentender.app.core.dependencies import get_current_user
from chickentender.app.core.exceptions import InsufficientPermissionsError
from chickentender.app.models.enums import Permission
from chickentender.app.models.user import User


def authorize(user: User, permission: Permission) -> User:
    """
    Raise unless the user holds every flag in `permission`.

    Raises:
        InsufficientPermissionsError: 403
    """
    if not user.has_permission(permission):
        raise InsufficientPermissionsError(
            f"{' and '.join(permission.names())} permission required",
            details={"required": permission.names()}
        )
    return user


def require_permission(permission: Permission):
    """
    Dependency factory for permission-based access control.

    Usage:
        @router.post("/orders")
        async def create_order(
            current_user: User = Depends(require_permission(Permission.ORDER_CREATOR))
        ):
            ...
    """
    async def permission_checker(current_user: User = Depends(get_current_user)) -> User:
        return authorize(current_user, permission)

    return permission_checker


require_admin = require_permission(Permission.ADMIN)
require_order_creator = require_permission(Permission.ORDER_CREATOR)
