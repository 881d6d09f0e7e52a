"""
Audit logging service for privileged and financial actions.

Audit records are written inside the caller's unit of work so they commit
or roll back together with the mutation they describe.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc, func
from chickentender.app.core.clock import utcnow
from chickentender.app.models.audit_log import AuditLog
from chickentender.app.models.user import User


@dataclass(frozen=True)
class Actor:
    """
    Who performs an operation, captured before its unit of work starts.

    A rollback expires every ORM instance in the session, so retried
    operations carry the actor as plain values.
    """
    id: Optional[int]
    label: str

    @classmethod
    def of(cls, user: User) -> "Actor":
        return cls(id=user.id, label=user.audit_label())


SYSTEM_ACTOR = Actor(id=None, label="(Scheduler)")


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Orders
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_CLOSED = "ORDER_CLOSED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_LOGGED = "ORDER_LOGGED"

    # Coins
    COINS_TRANSFERRED = "COINS_TRANSFERRED"
    COINS_SET = "COINS_SET"

    # User administration
    USER_ENABLED = "USER_ENABLED"
    USER_DISABLED = "USER_DISABLED"
    PERMISSIONS_CHANGED = "PERMISSIONS_CHANGED"

    # Operations
    JOB_REQUEUED = "JOB_REQUEUED"
    JOB_ARCHIVED = "JOB_ARCHIVED"


async def log_event(
    db: AsyncSession,
    action: str,
    log: str,
    actor_id: Optional[int] = None,
    target_user_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Append an audit record to the current transaction.

    Args:
        db: Database session (caller commits)
        action: Action being performed (use AuditAction constants)
        log: Human-readable description of what happened
        actor_id: ID of user performing the action, None for the system
        target_user_id: ID of user being acted upon (if applicable)
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        target_user_id=target_user_id,
        log=log,
        meta_data=metadata,
        timestamp=utcnow()
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 100,
    action: Optional[str] = None,
    target_user_id: Optional[int] = None
) -> Tuple[List[AuditLog], int]:
    """
    Retrieve one page of the audit trail, most recent first.

    Args:
        db: Database session
        page: 1-based page number
        page_size: Records per page
        action: Filter by action type
        target_user_id: Filter by target user ID

    Returns:
        (records on the page, total matching records)
    """
    query = select(AuditLog)
    count_query = select(func.count(AuditLog.id))

    if action:
        query = query.where(AuditLog.action == action)
        count_query = count_query.where(AuditLog.action == action)

    if target_user_id:
        query = query.where(AuditLog.target_user_id == target_user_id)
        count_query = count_query.where(AuditLog.target_user_id == target_user_id)

    query = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
    query = query.offset((page - 1) * page_size).limit(page_size)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query)
    return list(result.scalars().all()), total
