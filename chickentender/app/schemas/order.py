"""
Order API Schema Definitions.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Optional
from chickentender.app.models.order_enums import OrderState


class OrderCreateRequest(BaseModel):
    """Schema for opening an order."""
    order_type: str = Field(..., description="Name of a configured order type")
    close_date: datetime = Field(..., description="When the order closes; must be in the future")


class JoinOrderRequest(BaseModel):
    """Field values picked by the joining user, by field name."""
    details: Dict[str, str] = Field(default_factory=dict)


class SettleOrderRequest(BaseModel):
    purchaser_id: int = Field(..., description="User who paid for the order")


class ParticipantResponse(BaseModel):
    user_id: int
    details: Dict[str, str]
    joined_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    location: str
    description: str
    cost: int
    state: OrderState
    open_date: datetime
    close_date: datetime
    created_by_id: Optional[int] = None
    purchaser_id: Optional[int] = None
    participants: List[ParticipantResponse] = []

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    page_size: int


class SettlementResponse(BaseModel):
    """Schema for a settled order and its coin movements."""
    order: OrderResponse
    ledger_entry_id: int
    total_cost: int
    deltas: Dict[int, int]
