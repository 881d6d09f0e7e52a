"""
Job Scheduler (Domain Logic).

Durable delayed jobs keyed by (job type, target id). Jobs live in the
database so they survive restarts; a worker polls for due jobs, claims
each one with a conditional UPDATE so exactly one worker runs it, deletes
the job record and then runs the registered handler.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, update, delete, or_

from chickentender.app.core.clock import utcnow
from chickentender.app.core.config import settings
from chickentender.app.core.exceptions import ResourceNotFoundError, ValidationError
from chickentender.app.core.observability import correlation_id_var
from chickentender.app.models.dlq import DeadLetterQueue, DLQStatus
from chickentender.app.models.scheduled_job import ScheduledJob, JobType
from chickentender.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

JobHandler = Callable[[AsyncSession, int], Awaitable[Any]]


class JobScheduler:

    @staticmethod
    async def schedule(
        db: AsyncSession,
        job_type: JobType,
        target_id: int,
        due_at: datetime
    ) -> ScheduledJob:
        """
        Add a job to the current transaction.

        A due time in the past is clamped to now so the job fires on the
        next poll.
        """
        now = utcnow()
        job = ScheduledJob(
            job_type=job_type,
            target_id=target_id,
            due_at=max(due_at, now)
        )
        db.add(job)
        await db.flush()
        return job

    @staticmethod
    async def cancel(
        db: AsyncSession,
        target_id: int,
        job_types: Iterable[JobType] = tuple(JobType)
    ) -> int:
        """
        Delete pending jobs for a target. A job already claimed by a worker
        keeps running; its handler's own state guard makes it a no-op.

        Returns:
            Number of jobs removed
        """
        result = await db.execute(
            delete(ScheduledJob).where(
                ScheduledJob.target_id == target_id,
                ScheduledJob.job_type.in_(list(job_types))
            )
        )
        return result.rowcount

    @staticmethod
    async def claim_due(
        db: AsyncSession,
        worker_id: str,
        now: Optional[datetime] = None,
        limit: int = 20
    ) -> List[ScheduledJob]:
        """
        Claim up to `limit` due jobs for this worker and commit the claims.

        A job is claimable when unclaimed, or when its claim is older than
        settings.scheduler_claim_timeout_seconds (its worker died).
        """
        now = now or utcnow()
        stale_before = now - timedelta(seconds=settings.scheduler_claim_timeout_seconds)
        claimable = or_(
            ScheduledJob.claimed_by.is_(None),
            ScheduledJob.claimed_at < stale_before
        )

        result = await db.execute(
            select(ScheduledJob.id)
            .where(ScheduledJob.due_at <= now, claimable)
            .order_by(ScheduledJob.due_at, ScheduledJob.id)
            .limit(limit)
        )
        candidate_ids = list(result.scalars().all())

        claimed_ids = []
        for job_id in candidate_ids:
            claim = await db.execute(
                update(ScheduledJob)
                .where(ScheduledJob.id == job_id, claimable)
                .values(claimed_by=worker_id, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount == 1:
                claimed_ids.append(job_id)
        await db.commit()

        if not claimed_ids:
            return []

        result = await db.execute(
            select(ScheduledJob)
            .where(ScheduledJob.id.in_(claimed_ids))
            .order_by(ScheduledJob.due_at, ScheduledJob.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def remove_claimed(db: AsyncSession, job_id: int, worker_id: str) -> bool:
        """
        Delete a job this worker claimed, before running it.

        Returns False when the job was cancelled or re-claimed meanwhile,
        in which case it must not run.
        """
        result = await db.execute(
            delete(ScheduledJob).where(
                ScheduledJob.id == job_id,
                ScheduledJob.claimed_by == worker_id
            )
        )
        await db.commit()
        return result.rowcount == 1

    @staticmethod
    async def pending_for(db: AsyncSession, target_id: int) -> List[ScheduledJob]:
        result = await db.execute(
            select(ScheduledJob)
            .where(ScheduledJob.target_id == target_id)
            .order_by(ScheduledJob.due_at, ScheduledJob.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def record_failure(db: AsyncSession, job: ScheduledJob, error: BaseException) -> DeadLetterQueue:
        """Capture a failed job in the dead letter queue."""
        item = DeadLetterQueue(
            task_name=job.job_type.value,
            error_message=f"{type(error).__name__}: {error}",
            payload={"job_type": job.job_type.value, "target_id": job.target_id},
            status=DLQStatus.FAILED
        )
        db.add(item)
        await db.commit()
        return item

    @staticmethod
    async def requeue_dead_letter(db: AsyncSession, dlq_id: int, actor_id: int) -> ScheduledJob:
        """
        Re-enqueue a failed job to run on the next poll.

        Raises:
            ResourceNotFoundError: No such DLQ item
            ValidationError: Item is not FAILED or has no usable payload
        """
        result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dlq_id))
        item = result.scalar_one_or_none()

        if not item:
            raise ResourceNotFoundError("DLQ item", dlq_id)

        if item.status != DLQStatus.FAILED:
            raise ValidationError(f"DLQ item {dlq_id} is {item.status.value}, expected FAILED")

        payload = item.payload or {}
        try:
            job_type = JobType(payload.get("job_type"))
            target_id = int(payload["target_id"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"DLQ item {dlq_id} has no job payload")

        item.status = DLQStatus.RETRYING
        item.retry_count += 1
        item.last_retry_at = utcnow()

        job = await JobScheduler.schedule(db, job_type, target_id, utcnow())
        await log_event(
            db,
            action=AuditAction.JOB_REQUEUED,
            log=f"Requeued failed {job_type.value} job for target {target_id} (DLQ {dlq_id})",
            actor_id=actor_id,
            metadata={"dlq_id": dlq_id, "job_id": job.id}
        )
        await db.commit()
        return job

    @staticmethod
    async def archive_dead_letter(db: AsyncSession, dlq_id: int, actor_id: int) -> DeadLetterQueue:
        """
        Give up on a failed job for good.

        Raises:
            ResourceNotFoundError: No such DLQ item
            ValidationError: Item is already archived
        """
        result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dlq_id))
        item = result.scalar_one_or_none()

        if not item:
            raise ResourceNotFoundError("DLQ item", dlq_id)
        if item.status == DLQStatus.ARCHIVED:
            raise ValidationError(f"DLQ item {dlq_id} is already archived")

        item.status = DLQStatus.ARCHIVED
        await log_event(
            db,
            action=AuditAction.JOB_ARCHIVED,
            log=f"Archived failed {item.task_name} job (DLQ {dlq_id})",
            actor_id=actor_id,
            metadata={"dlq_id": dlq_id, "payload": item.payload}
        )
        await db.commit()
        return item


class SchedulerWorker:
    """
    Background polling worker.

    Each poll claims a batch of due jobs and runs them concurrently, at
    most `concurrency` at a time, each in its own session. Jobs for
    different targets have no ordering guarantee.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        handlers: Dict[JobType, JobHandler],
        worker_id: Optional[str] = None,
        poll_interval: Optional[float] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.handlers = handlers
        self.worker_id = worker_id or settings.scheduler_worker_id
        self.poll_interval = poll_interval or settings.scheduler_poll_interval_seconds
        self.batch_size = batch_size or settings.scheduler_batch_size
        self._semaphore = asyncio.Semaphore(concurrency or settings.scheduler_concurrency)
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        """Claim and execute one batch of due jobs. Returns how many were claimed."""
        async with self.session_factory() as db:
            jobs = await JobScheduler.claim_due(db, self.worker_id, limit=self.batch_size)

        if jobs:
            results = await asyncio.gather(
                *(self._execute(job) for job in jobs), return_exceptions=True
            )
            for job, outcome in zip(jobs, results):
                if isinstance(outcome, Exception):
                    logger.error("Job %s could not be dispatched: %s", job, outcome)
        return len(jobs)

    async def _execute(self, job: ScheduledJob) -> None:
        # runs in its own task, so the id only tags this job's log lines
        correlation_id_var.set(f"job-{job.id}")
        async with self._semaphore:
            async with self.session_factory() as db:
                if not await JobScheduler.remove_claimed(db, job.id, self.worker_id):
                    logger.info("Job %s was cancelled before it ran", job)
                    return

                handler = self.handlers.get(job.job_type)
                if handler is None:
                    logger.error("No handler registered for %s", job.job_type.value)
                    return

                try:
                    await handler(db, job.target_id)
                except Exception as e:
                    logger.exception("Error in '%s' job for target %s", job.job_type.value, job.target_id)
                    await db.rollback()
                    try:
                        await JobScheduler.record_failure(db, job, e)
                    except Exception as dlq_error:
                        logger.error("Failed to record %s in DLQ: %s", job, dlq_error)

    async def run_forever(self) -> None:
        logger.info("Scheduler worker %s started", self.worker_id)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduler poll failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler worker %s stopped", self.worker_id)

    def start(self) -> asyncio.Task:
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
