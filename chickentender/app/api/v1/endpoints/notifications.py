"""
Notification API Endpoints.

The caller's inbox of order and coin mails.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from chickentender.app.db.session import get_db
from chickentender.app.models.user import User
from chickentender.app.core.dependencies import get_current_user
from chickentender.app.services.notification_service import NotificationService
from chickentender.app.schemas.notification import NotificationResponse, UnreadCountResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Newest first."""
    return await NotificationService.list_for_user(db, current_user.id, unread_only, limit)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return UnreadCountResponse(unread=await NotificationService.unread_count(db, current_user.id))


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int = Path(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Mark one of your notifications as read."""
    if not await NotificationService.mark_read(db, notification_id, current_user.id):
        raise HTTPException(status_code=404, detail="Notification not found")

    await db.commit()
    return {"status": "success"}


@router.patch("/read-all")
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await NotificationService.mark_all_read(db, current_user.id)
    await db.commit()
    return {"status": "success", "count": count}
