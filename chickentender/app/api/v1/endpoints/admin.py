"""
Admin API Endpoints.

Provides admin-only user management endpoints with audit logging.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Optional

from chickentender.app.db.session import get_db
from chickentender.app.core.config import settings
from chickentender.app.models.enums import Permission
from chickentender.app.models.user import User
from chickentender.app.schemas.admin import (
    SetCoinsRequest, SetPermissionsRequest, AdminActionResponse,
    AuditTrailResponse, AuditLogResponse
)
from chickentender.app.schemas.user import UserResponse, UserListResponse
from chickentender.app.core.guards import require_admin
from chickentender.app.core.token_revocation import revoke_all_user_tokens, clear_user_token_revocation
from chickentender.app.domain.coins.coin_service import CoinService
from chickentender.app.services.audit import log_event, AuditAction, get_audit_trail

router = APIRouter(prefix="/admin", tags=["Admin"])


async def _get_target_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    target_user = result.scalar_one_or_none()

    if not target_user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return target_user


@router.get("/users", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    List all users, enabled or not (admin-only).

    Users waiting to be enabled come first.
    """
    total = (await db.execute(select(func.count(User.id)))).scalar()

    offset = (page - 1) * settings.page_size
    query = (
        select(User)
        .order_by(User.enabled, User.last_name, User.first_name, User.id)
        .offset(offset)
        .limit(settings.page_size)
    )
    result = await db.execute(query)

    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in result.scalars().all()],
        total=total,
        page=page,
        page_size=settings.page_size
    )


@router.post("/users/{user_id}/enable", response_model=AdminActionResponse)
async def enable_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Allow a signed-up user to use the application (admin-only)."""
    target_user = await _get_target_user(db, user_id)

    if target_user.enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is already enabled"
        )

    target_user.enabled = True
    audit_log = await log_event(
        db,
        action=AuditAction.USER_ENABLED,
        log=f"{admin.audit_label()} enabled user {target_user.audit_label()}",
        actor_id=admin.id,
        target_user_id=target_user.id
    )
    await db.commit()

    # Tokens issued after a previous disable become valid again
    await clear_user_token_revocation(user_id)

    return AdminActionResponse(
        success=True,
        message=f"User '{target_user.full_name}' has been enabled",
        user_id=user_id,
        action=AuditAction.USER_ENABLED,
        audit_log_id=audit_log.id
    )


@router.post("/users/{user_id}/disable", response_model=AdminActionResponse)
async def disable_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Disable a user and revoke all their active tokens (admin-only).

    This immediately terminates all user sessions.
    """
    target_user = await _get_target_user(db, user_id)

    # Prevent locking yourself out
    if target_user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot disable yourself"
        )

    if not target_user.enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is already disabled"
        )

    target_user.enabled = False
    audit_log = await log_event(
        db,
        action=AuditAction.USER_DISABLED,
        log=f"{admin.audit_label()} disabled user {target_user.audit_label()}",
        actor_id=admin.id,
        target_user_id=target_user.id
    )
    await db.commit()

    await revoke_all_user_tokens(user_id)

    return AdminActionResponse(
        success=True,
        message=f"User '{target_user.full_name}' has been disabled",
        user_id=user_id,
        action=AuditAction.USER_DISABLED,
        audit_log_id=audit_log.id
    )


@router.post("/users/{user_id}/coins", response_model=AdminActionResponse)
async def set_user_coins(
    user_id: int,
    request: SetCoinsRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Overwrite a user's coin balance; recorded in the ledger (admin-only)."""
    entry = await CoinService.force_set(db, admin, user_id, request.coins)

    return AdminActionResponse(
        success=True,
        message=f"Coins of user {user_id} set to {request.coins} (ledger entry {entry.id})",
        user_id=user_id,
        action=AuditAction.COINS_SET
    )


@router.put("/users/{user_id}/permissions", response_model=AdminActionResponse)
async def set_user_permissions(
    user_id: int,
    request: SetPermissionsRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Replace a user's permissions (admin-only)."""
    target_user = await _get_target_user(db, user_id)

    new_permissions = Permission.from_names(request.permissions)
    if target_user.id == admin.id and Permission.ADMIN not in new_permissions:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove your own admin permission"
        )

    previous = target_user.permission_flags
    target_user.permissions = int(new_permissions)
    audit_log = await log_event(
        db,
        action=AuditAction.PERMISSIONS_CHANGED,
        log=(
            f"{admin.audit_label()} set permissions of {target_user.audit_label()} "
            f"from {previous.names()} to {new_permissions.names()}"
        ),
        actor_id=admin.id,
        target_user_id=target_user.id,
        metadata={"previous": previous.names(), "new": new_permissions.names()}
    )
    await db.commit()

    return AdminActionResponse(
        success=True,
        message=f"Permissions of '{target_user.full_name}' set to {new_permissions.names()}",
        user_id=user_id,
        action=AuditAction.PERMISSIONS_CHANGED,
        audit_log_id=audit_log.id
    )


@router.get("/audit-logs", response_model=AuditTrailResponse)
async def get_audit_logs(
    page: int = Query(1, ge=1, description="Page number"),
    action: Optional[str] = Query(None, description="Filter by action type"),
    target_user_id: Optional[int] = Query(None, description="Filter by target user ID"),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Retrieve the audit trail, most recent first (admin-only).
    """
    logs, total = await get_audit_trail(
        db=db,
        page=page,
        page_size=settings.audit_page_size,
        action=action,
        target_user_id=target_user_id
    )

    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=settings.audit_page_size
    )
