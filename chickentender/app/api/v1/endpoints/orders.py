"""
Order API Endpoints.

Browsing orders and joining or leaving them. Open to every enabled user.
"""

from fastapi import APIRouter, Depends, Query, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from chickentender.app.db.session import get_db
from chickentender.app.core.config import settings, OrderType
from chickentender.app.core.dependencies import get_current_user
from chickentender.app.domain.orders.order_service import OrderService
from chickentender.app.models.order_enums import OrderState
from chickentender.app.models.user import User
from chickentender.app.schemas.order import (
    OrderResponse, OrderListResponse, JoinOrderRequest
)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    state: Optional[OrderState] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List orders, closing soon first."""
    orders, total = await OrderService.list_orders(
        db, page=page, page_size=settings.page_size, state=state
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=settings.page_size
    )


@router.get("/types", response_model=List[OrderType])
async def list_order_types(current_user: User = Depends(get_current_user)):
    """Order types that can be opened, with the fields participants fill in."""
    return settings.order_types


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int = Path(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService.get_order(db, order_id)


@router.post("/{order_id}/join", response_model=OrderResponse)
async def join_order(
    order_id: int = Path(...),
    req: Optional[JoinOrderRequest] = Body(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Join an open or closing order."""
    details = req.details if req else {}
    return await OrderService.join_order(db, order_id, current_user, details)


@router.post("/{order_id}/leave", response_model=OrderResponse)
async def leave_order(
    order_id: int = Path(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Leave an order you joined while it is still open or closing."""
    return await OrderService.leave_order(db, order_id, current_user)
