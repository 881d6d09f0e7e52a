"""
Notification Database Model.

In-app delivery channel for mail-style notifications.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from chickentender.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    ORDER_UPDATE = "ORDER_UPDATE"
    COIN_UPDATE = "COIN_UPDATE"


class Notification(Base):
    """
    In-App Notification.
    One row per recipient of a sent template; cc recipients are flagged.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_cc = Column(Boolean, default=False, nullable=False)

    # Content
    template = Column(String(100), nullable=False, index=True)
    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    metadata_payload = Column(JSON, nullable=True)

    # State
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, template='{self.template}')>"
