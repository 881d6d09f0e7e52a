"""
Audit Log Database Model.

Append-only trail of privileged and financial actions.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from chickentender.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking privileged and financial actions.

    Each record carries a free-text `log` line for humans plus the action
    name and JSON metadata for filtering. Written in the same transaction
    as the mutation it describes; never read by business logic.

    Events logged:
    - ORDER_CREATED / ORDER_CLOSED / ORDER_CANCELLED / ORDER_LOGGED
    - COINS_TRANSFERRED / COINS_SET
    - USER_ENABLED / USER_DISABLED / PERMISSIONS_CHANGED
    - JOB_REQUEUED / JOB_ARCHIVED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Who was the target of the action (for user management actions)
    target_user_id = Column(Integer, index=True, nullable=True)

    # Human-readable record
    log = Column(Text, nullable=False)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id})>"
