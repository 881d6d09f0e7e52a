"""
Order Administration API Endpoints.

Opening, closing, cancelling and settling orders. Requires the
ORDER_CREATOR permission.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from chickentender.app.db.session import get_db
from chickentender.app.core.guards import require_order_creator
from chickentender.app.domain.orders.order_service import OrderService
from chickentender.app.domain.settlement.settlement_service import SettlementService
from chickentender.app.models.user import User
from chickentender.app.schemas.order import (
    OrderCreateRequest, OrderResponse, SettleOrderRequest, SettlementResponse
)

router = APIRouter(prefix="/admin/orders", tags=["Admin - Orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    req: OrderCreateRequest,
    current_user: User = Depends(require_order_creator),
    db: AsyncSession = Depends(get_db)
):
    """Open a new order of a configured type; everyone enabled is notified."""
    return await OrderService.create_order(db, req.order_type, req.close_date, current_user)


@router.post("/{order_id}/close", response_model=OrderResponse)
async def close_order(
    order_id: int = Path(...),
    current_user: User = Depends(require_order_creator),
    db: AsyncSession = Depends(get_db)
):
    """
    Close an order now.

    An order nobody joined is cancelled instead.
    """
    return await OrderService.close_order(db, order_id, current_user)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int = Path(...),
    current_user: User = Depends(require_order_creator),
    db: AsyncSession = Depends(get_db)
):
    return await OrderService.cancel_order(db, order_id, current_user)


@router.post("/{order_id}/settle", response_model=SettlementResponse)
async def settle_order(
    req: SettleOrderRequest,
    order_id: int = Path(...),
    current_user: User = Depends(require_order_creator),
    db: AsyncSession = Depends(get_db)
):
    """
    Log a closed order as purchased.

    Participants are debited the order cost and the purchaser is credited
    in one atomic settlement; the order becomes ARCHIVED.
    """
    result = await SettlementService.settle_order(db, order_id, req.purchaser_id, current_user)
    return SettlementResponse(
        order=OrderResponse.model_validate(result.order),
        ledger_entry_id=result.ledger_entry_id,
        total_cost=result.plan.total_cost,
        deltas=result.plan.deltas
    )
