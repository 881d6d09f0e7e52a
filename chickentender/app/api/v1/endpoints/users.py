"""
User API Endpoints.

The coin leaderboard, the caller's own account and profile, and
peer-to-peer transfers.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from typing import Literal

from chickentender.app.db.session import get_db
from chickentender.app.core.config import settings
from chickentender.app.core.dependencies import get_current_user
from chickentender.app.core.exceptions import ValidationError
from chickentender.app.domain.coins.coin_service import CoinService
from chickentender.app.models.user import User
from chickentender.app.schemas.user import (
    UserResponse, UserListResponse, ProfileUpdateRequest, TransferRequest, TransferResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    order: Literal["asc", "desc"] = Query("desc", description="Sort by coins"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Enabled users ranked by coin balance."""
    total = (await db.execute(
        select(func.count(User.id)).where(User.enabled == True)
    )).scalar()

    by_coins = User.coins.desc() if order == "desc" else User.coins.asc()
    offset = (page - 1) * settings.page_size
    result = await db.execute(
        select(User)
        .where(User.enabled == True)
        .order_by(by_coins, User.last_name, User.first_name, User.id)
        .offset(offset)
        .limit(settings.page_size)
    )

    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in result.scalars().all()],
        total=total,
        page=page,
        page_size=settings.page_size
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch("/me", response_model=UserResponse)
async def update_me(
    req: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit your own first name, last name or email address.

    Raises 400 when the email address belongs to another user.
    """
    if req.email is not None and req.email != current_user.email:
        taken = await db.execute(
            select(User.id).where(User.email == req.email, User.id != current_user.id)
        )
        if taken.scalar_one_or_none() is not None:
            raise ValidationError("Email address is already in use", details={"email": req.email})
        current_user.email = req.email

    if req.first_name is not None:
        current_user.first_name = req.first_name
    if req.last_name is not None:
        current_user.last_name = req.last_name

    try:
        await db.commit()
    except IntegrityError:
        # lost a race for the same address
        await db.rollback()
        raise ValidationError("Email address is already in use", details={"email": req.email})

    logger.info("User %s updated their profile", current_user.id)
    return current_user



@router.post("/me/transfer", response_model=TransferResponse)
async def transfer_coins(
    req: TransferRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Give coins to another enabled user.

    The amount must be at least 1 and no more than your current balance.
    """
    result = await CoinService.transfer(db, current_user, req.recipient_id, req.amount)
    return TransferResponse(
        ledger_entry_id=result.ledger_entry_id,
        amount=result.amount,
        balance=result.sender_balance
    )
