"""
Dead Letter Queue (DLQ) Model.

Scheduled jobs whose handler raised, kept for an administrator to retry
or archive.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from chickentender.app.db.session import Base
import enum


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"  # Waiting for an administrator
    RETRYING = "RETRYING"  # Re-enqueued as a scheduled job
    ARCHIVED = "ARCHIVED"  # Given up on


class DeadLetterQueue(Base):
    """
    One failed job run.

    `payload` holds the job type and target id, which is all that is
    needed to schedule the job again.
    """
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    task_name = Column(String(100), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_retry_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<DLQ(id={self.id}, task='{self.task_name}', status='{self.status.value}')>"
