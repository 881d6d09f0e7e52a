"""
Order database models.

An order is a scheduled group purchase that users join and that is later
settled in coins.
"""

from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, DateTime, Enum, JSON,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chickentender.app.db.session import Base
from chickentender.app.models.order_enums import OrderState


class Order(Base):
    """
    Order model.

    Lifecycle: OPEN -> CLOSING -> CLOSED -> ARCHIVED, with CANCELLED
    reachable from OPEN, CLOSING and CLOSED. Every state change is a
    conditional UPDATE guarded on the expected source state.

    A purchaser exists exactly when the order is ARCHIVED.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What is being ordered (order type name) and per-participant cost
    location = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    cost = Column(Integer, nullable=False)

    state = Column(Enum(OrderState), default=OrderState.OPEN, nullable=False, index=True)

    # close_date is the planned close until the order closes, then the actual one
    open_date = Column(DateTime, nullable=False)
    close_date = Column(DateTime, nullable=False, index=True)

    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    purchaser_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    participants = relationship(
        "OrderParticipant",
        back_populates="order",
        order_by="OrderParticipant.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    purchaser = relationship("User", foreign_keys=[purchaser_id], lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "(state = 'ARCHIVED') = (purchaser_id IS NOT NULL)",
            name="ck_orders_purchaser_iff_archived",
        ),
        CheckConstraint("cost >= 0", name="ck_orders_cost_non_negative"),
    )

    @property
    def participant_ids(self) -> list:
        return [p.user_id for p in self.participants]

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def __repr__(self):
        return f"<Order(id={self.id}, location='{self.location}', state='{self.state.value}')>"


class OrderParticipant(Base):
    """
    A user's entry in an order, with the field values they picked.

    A user may join a given order at most once.
    """
    __tablename__ = "order_participants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Field name -> chosen value
    details = Column(JSON, nullable=False, default=dict)

    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="participants")
    user = relationship("User", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("order_id", "user_id", name="uq_order_participants_order_user"),
    )

    def __repr__(self):
        return f"<OrderParticipant(order_id={self.order_id}, user_id={self.user_id})>"
