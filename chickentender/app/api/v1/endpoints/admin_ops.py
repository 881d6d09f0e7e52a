"""
Admin Operations API Endpoints.

Inspect and retry scheduled jobs that failed into the Dead Letter Queue.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from typing import List, Optional

from chickentender.app.db.session import get_db
from chickentender.app.domain.scheduling.scheduler import JobScheduler
from chickentender.app.models.dlq import DeadLetterQueue, DLQStatus
from chickentender.app.models.user import User
from chickentender.app.core.guards import require_admin
from chickentender.app.schemas.admin import DLQItemResponse, RequeueResponse

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.get("/dlq", response_model=List[DLQItemResponse])
async def list_dlq_items(
    status: Optional[DLQStatus] = Query(DLQStatus.FAILED),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List dead-lettered jobs, newest first."""
    query = select(DeadLetterQueue)
    if status:
        query = query.where(DeadLetterQueue.status == status)
    query = query.order_by(desc(DeadLetterQueue.id)).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()


@router.post("/dlq/{dlq_id}/retry", response_model=RequeueResponse)
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Retry a failed job from the Dead Letter Queue.

    The job is scheduled again to run on the next scheduler poll. State
    guards make a retried transition a no-op if the order has moved on.
    """
    job = await JobScheduler.requeue_dead_letter(db, dlq_id, current_user.id)
    return RequeueResponse(dlq_id=dlq_id, job_id=job.id, due_at=job.due_at)


@router.post("/dlq/{dlq_id}/archive", response_model=DLQItemResponse)
async def archive_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Stop retrying a failed job; it stays listed under status ARCHIVED."""
    return await JobScheduler.archive_dead_letter(db, dlq_id, current_user.id)
