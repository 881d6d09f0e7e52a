"""
Scheduled Job Model.

Durable queue of delayed order transitions, polled and claimed by the
scheduler worker.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Index
from sqlalchemy.sql import func
from chickentender.app.db.session import Base
import enum


class JobType(str, enum.Enum):
    CLOSING_ORDER = "CLOSING_ORDER"  # OPEN -> CLOSING, notify non-participants
    CLOSE_ORDER = "CLOSE_ORDER"  # OPEN/CLOSING -> CLOSED or CANCELLED


class ScheduledJob(Base):
    """
    Scheduled job table.

    A job is claimed by setting claimed_by with a conditional UPDATE, and
    deleted by the worker before its transition runs.
    """
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    job_type = Column(Enum(JobType), nullable=False)
    target_id = Column(Integer, nullable=False)
    due_at = Column(DateTime, nullable=False, index=True)

    claimed_by = Column(String(100), nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_scheduled_jobs_type_target', 'job_type', 'target_id'),
    )

    def __repr__(self):
        return f"<ScheduledJob(id={self.id}, type='{self.job_type.value}', target={self.target_id}, due={self.due_at})>"
