"""
Concurrency Tests.

Validates that races on one order resolve to a single consistent outcome.
"""

import asyncio
import random

import pytest
from datetime import timedelta
from sqlalchemy.exc import DBAPIError

from chickentender.app.core.clock import utcnow
from chickentender.app.core.config import settings
from chickentender.app.core.exceptions import ValidationError, OrderStateError
from chickentender.app.domain.orders import order_service
from chickentender.app.domain.orders.order_service import OrderService
from chickentender.app.domain.scheduling.scheduler import JobScheduler
from chickentender.app.models.order import Order
from chickentender.app.models.order_enums import OrderState

DETAILS = {"Sauce": "Ranch", "Side": "Fries"}


class SerializationFailure(Exception):
    sqlstate = "40001"


def concurrent_update():
    return DBAPIError(
        "SELECT orders FOR UPDATE", {},
        SerializationFailure("could not serialize access due to concurrent update")
    )


async def open_order(db, actor):
    return await OrderService.create_order(
        db, "Chicken Tenders", utcnow() + timedelta(hours=2), actor
    )


@pytest.mark.asyncio
async def test_duplicate_join_caught_by_unique_constraint(db_session, creator_user, make_user, mocker):
    """Two joins by one user that both pass the participant check."""
    alice = await make_user("Alice")
    alice_id = alice.id
    order = await open_order(db_session, creator_user)
    order_id = order.id
    await OrderService.join_order(db_session, order_id, alice, DETAILS)

    mocker.patch.object(Order, "has_participant", return_value=False)

    with pytest.raises(ValidationError) as exc_info:
        await OrderService.join_order(db_session, order_id, alice, DETAILS)

    assert not isinstance(exc_info.value, OrderStateError)
    order = await OrderService.get_order(db_session, order_id)
    assert order.participant_ids == [alice_id]


@pytest.mark.asyncio
async def test_scheduled_close_losing_to_cancel_is_noop(
    db_session, creator_user, make_user, session_factory, mocker
):
    mocker.patch.object(settings, "db_retry_base_delay", 0)
    alice = await make_user("Alice")
    order = await open_order(db_session, creator_user)
    order_id = order.id
    await OrderService.join_order(db_session, order_id, alice, DETAILS)

    real_lock = order_service.lock_order
    waited = []

    async def lock_after_concurrent_cancel(db, locked_id):
        if not waited:
            waited.append(locked_id)
            # the cancel commits while this transaction waits on the row
            async with session_factory() as other:
                await OrderService.cancel_order(other, locked_id, creator_user)
            raise concurrent_update()
        return await real_lock(db, locked_id)

    mocker.patch.object(order_service, "lock_order", new=lock_after_concurrent_cancel)

    assert await OrderService.close_on_schedule(db_session, order_id) is False

    order = await OrderService.get_order(db_session, order_id)
    assert order.state == OrderState.CANCELLED
    assert order.participants == []


@pytest.mark.asyncio
async def test_join_racing_closing_transition_succeeds(
    db_session, creator_user, make_user, session_factory, mocker
):
    mocker.patch.object(settings, "db_retry_base_delay", 0)
    bob = await make_user("Bob")
    bob_id = bob.id
    order = await open_order(db_session, creator_user)
    order_id = order.id

    real_lock = order_service.lock_order
    waited = []

    async def lock_after_concurrent_closing(db, locked_id):
        if not waited:
            waited.append(locked_id)
            async with session_factory() as other:
                assert await OrderService.mark_closing(other, locked_id) is True
            raise concurrent_update()
        return await real_lock(db, locked_id)

    mocker.patch.object(order_service, "lock_order", new=lock_after_concurrent_closing)

    order = await OrderService.join_order(db_session, order_id, bob, DETAILS)

    assert order.state == OrderState.CLOSING
    assert order.participant_ids == [bob_id]


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(5))
async def test_joins_and_leave_racing_close(seed, db_session, creator_user, make_user, session_factory):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    joiners = [await make_user(f"Joiner{i}") for i in range(3)]
    order = await open_order(db_session, creator_user)
    order_id = order.id
    for user in (alice, bob):
        await OrderService.join_order(db_session, order_id, user, DETAILS)

    # stands in for the row lock that orders these in the database
    row_lock = asyncio.Lock()

    async def run(operation, *args):
        async with row_lock:
            async with session_factory() as session:
                return await operation(session, order_id, *args)

    calls = [
        ("close", OrderService.close_order, (creator_user,)),
        ("scheduled", OrderService.close_on_schedule, ()),
        ("leave", OrderService.leave_order, (bob,)),
    ] + [
        (f"join{i}", OrderService.join_order, (user, DETAILS))
        for i, user in enumerate(joiners)
    ]
    random.Random(seed).shuffle(calls)

    results = await asyncio.gather(
        *[run(operation, *args) for _, operation, args in calls],
        return_exceptions=True
    )
    outcome = dict(zip([name for name, _, _ in calls], results))

    failures = [r for r in results if isinstance(r, Exception)]
    assert all(isinstance(f, OrderStateError) for f in failures)

    # exactly one close made the transition
    manual_won = not isinstance(outcome["close"], Exception)
    assert manual_won != (outcome["scheduled"] is True)

    expected = {alice.id}
    if isinstance(outcome["leave"], Exception):
        expected.add(bob.id)
    for i, user in enumerate(joiners):
        if not isinstance(outcome[f"join{i}"], Exception):
            expected.add(user.id)

    order = await OrderService.get_order(db_session, order_id)
    assert order.state == OrderState.CLOSED
    assert set(order.participant_ids) == expected
    assert await JobScheduler.pending_for(db_session, order_id) == []
