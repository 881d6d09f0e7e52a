"""
Scheduler tests.

Durable jobs, worker claims, dead-lettering and requeue.
"""

import os
import socket

import pytest
from datetime import timedelta
from sqlalchemy import select, update

from chickentender.app.core.clock import utcnow
from chickentender.app.core.config import settings
from chickentender.app.core.exceptions import ValidationError, ResourceNotFoundError
from chickentender.app.domain.orders.order_service import OrderService, ORDER_JOB_HANDLERS
from chickentender.app.domain.scheduling.scheduler import JobScheduler, SchedulerWorker
from chickentender.app.models.dlq import DeadLetterQueue, DLQStatus
from chickentender.app.models.order_enums import OrderState
from chickentender.app.models.scheduled_job import ScheduledJob, JobType

DETAILS = {"Sauce": "BBQ", "Side": "Fries"}


async def add_job(db, job_type=JobType.CLOSE_ORDER, target_id=1, due_at=None):
    job = await JobScheduler.schedule(db, job_type, target_id, due_at or utcnow())
    await db.commit()
    return job


@pytest.mark.asyncio
async def test_schedule_clamps_past_due_time(db_session):
    before = utcnow()
    job = await add_job(db_session, due_at=before - timedelta(hours=1))

    assert job.due_at >= before


@pytest.mark.asyncio
async def test_claim_is_exclusive(db_session):
    job = await add_job(db_session)
    later = await add_job(db_session, target_id=2, due_at=utcnow() + timedelta(hours=1))

    claimed = await JobScheduler.claim_due(db_session, "worker-a")
    assert [j.id for j in claimed] == [job.id]
    assert claimed[0].claimed_by == "worker-a"

    assert await JobScheduler.claim_due(db_session, "worker-b") == []

    # not yet due
    assert later.id not in [j.id for j in claimed]


@pytest.mark.asyncio
async def test_stale_claim_is_reclaimed(db_session):
    job = await add_job(db_session)
    await JobScheduler.claim_due(db_session, "worker-a")

    much_later = utcnow() + timedelta(seconds=settings.scheduler_claim_timeout_seconds + 60)
    claimed = await JobScheduler.claim_due(db_session, "worker-b", now=much_later)

    assert [j.id for j in claimed] == [job.id]
    assert claimed[0].claimed_by == "worker-b"

    # the original worker lost it
    assert await JobScheduler.remove_claimed(db_session, job.id, "worker-a") is False
    assert await JobScheduler.remove_claimed(db_session, job.id, "worker-b") is True


@pytest.mark.asyncio
async def test_cancelled_job_is_not_run(db_session):
    job = await add_job(db_session, target_id=7)
    await JobScheduler.claim_due(db_session, "worker-a")

    assert await JobScheduler.cancel(db_session, 7) == 1
    await db_session.commit()

    assert await JobScheduler.remove_claimed(db_session, job.id, "worker-a") is False


@pytest.mark.asyncio
async def test_cancel_only_selected_types(db_session):
    await add_job(db_session, JobType.CLOSING_ORDER, target_id=3)
    await add_job(db_session, JobType.CLOSE_ORDER, target_id=3)

    assert await JobScheduler.cancel(db_session, 3, [JobType.CLOSING_ORDER]) == 1
    await db_session.commit()

    remaining = await JobScheduler.pending_for(db_session, 3)
    assert [j.job_type for j in remaining] == [JobType.CLOSE_ORDER]


@pytest.mark.asyncio
async def test_worker_runs_order_transitions(db_session, session_factory, creator_user, make_user, refresh):
    alice = await make_user("Alice")
    order = await OrderService.create_order(
        db_session, "Chicken Tenders", utcnow() + timedelta(minutes=10), creator_user
    )
    order_id = order.id
    await OrderService.join_order(db_session, order_id, alice, DETAILS)
    await db_session.commit()

    worker = SchedulerWorker(session_factory, ORDER_JOB_HANDLERS, concurrency=1)

    # closing lead already passed, so the closing job is due now
    assert await worker.run_once() == 1
    order = await OrderService.get_order(db_session, order_id)
    assert order.state == OrderState.CLOSING
    assert [j.job_type for j in await JobScheduler.pending_for(db_session, order_id)] == [JobType.CLOSE_ORDER]

    await db_session.execute(
        update(ScheduledJob)
        .where(ScheduledJob.target_id == order_id)
        .values(due_at=utcnow() - timedelta(seconds=1))
    )
    await db_session.commit()

    assert await worker.run_once() == 1
    order = await OrderService.get_order(db_session, order_id)
    assert order.state == OrderState.CLOSED
    assert await JobScheduler.pending_for(db_session, order_id) == []

    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_refired_closing_job_after_close_is_noop(db_session, session_factory, make_order, make_user):
    alice = await make_user("Alice")
    order = await make_order(participants=[alice])
    order_id = order.id
    await add_job(db_session, JobType.CLOSING_ORDER, target_id=order_id)

    worker = SchedulerWorker(session_factory, ORDER_JOB_HANDLERS, concurrency=1)
    assert await worker.run_once() == 1

    order = await OrderService.get_order(db_session, order_id)
    assert order.state == OrderState.CLOSED
    dlq = (await db_session.execute(select(DeadLetterQueue))).scalars().all()
    assert dlq == []


@pytest.mark.asyncio
async def test_empty_order_is_cancelled_at_close(db_session, session_factory, creator_user):
    order = await OrderService.create_order(
        db_session, "Pizza", utcnow() + timedelta(minutes=5), creator_user
    )
    order_id = order.id
    await db_session.execute(
        update(ScheduledJob)
        .where(ScheduledJob.target_id == order_id)
        .values(due_at=utcnow() - timedelta(seconds=1))
    )
    await db_session.commit()

    worker = SchedulerWorker(session_factory, ORDER_JOB_HANDLERS, concurrency=1)
    await worker.run_once()

    order = await OrderService.get_order(db_session, order_id)
    assert order.state == OrderState.CANCELLED
    assert await JobScheduler.pending_for(db_session, order_id) == []


@pytest.mark.asyncio
async def test_failed_job_is_dead_lettered_and_requeued(db_session, session_factory, admin_user):
    async def broken_handler(db, target_id):
        raise RuntimeError(f"cannot close {target_id}")

    await add_job(db_session, JobType.CLOSE_ORDER, target_id=42)
    worker = SchedulerWorker(session_factory, {JobType.CLOSE_ORDER: broken_handler}, concurrency=1)

    assert await worker.run_once() == 1
    assert await JobScheduler.pending_for(db_session, 42) == []

    item = (await db_session.execute(select(DeadLetterQueue))).scalar_one()
    assert item.status == DLQStatus.FAILED
    assert item.task_name == JobType.CLOSE_ORDER.value
    assert item.payload == {"job_type": "CLOSE_ORDER", "target_id": 42}
    assert "cannot close 42" in item.error_message
    dlq_id = item.id

    job = await JobScheduler.requeue_dead_letter(db_session, dlq_id, admin_user.id)
    assert job.job_type == JobType.CLOSE_ORDER
    assert job.target_id == 42

    item = (await db_session.execute(
        select(DeadLetterQueue)
        .where(DeadLetterQueue.id == dlq_id)
        .execution_options(populate_existing=True)
    )).scalar_one()
    assert item.status == DLQStatus.RETRYING
    assert item.retry_count == 1

    with pytest.raises(ValidationError):
        await JobScheduler.requeue_dead_letter(db_session, dlq_id, admin_user.id)

    with pytest.raises(ResourceNotFoundError):
        await JobScheduler.requeue_dead_letter(db_session, 9999, admin_user.id)


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory):
    worker = SchedulerWorker(session_factory, ORDER_JOB_HANDLERS, poll_interval=0.01)

    task = worker.start()
    await worker.stop()

    assert task.done()


def test_default_worker_id_is_unique_per_process():
    assert settings.scheduler_worker_id == f"{socket.gethostname()}-{os.getpid()}"
