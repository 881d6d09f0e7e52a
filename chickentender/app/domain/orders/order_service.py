"""
Order Service (Domain Logic).

Order lifecycle: creation, join/leave, scheduled and manual closing,
cancellation. Every state change is a conditional UPDATE guarded on the
expected source state, issued while the order row is locked, so a
scheduled close racing a manual action or a join resolves to whichever
committed first. A transition that matches no row is a lost race and
leaves the order as the winner left it.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, case, desc, func
from sqlalchemy.exc import IntegrityError

from chickentender.app.core.clock import utcnow, to_naive_utc
from chickentender.app.core.config import settings, OrderType
from chickentender.app.core.exceptions import (
    ValidationError, OrderStateError, ResourceNotFoundError
)
from chickentender.app.core.reliability import with_storage_retry
from chickentender.app.db.session import unit_of_work
from chickentender.app.domain.scheduling.scheduler import JobScheduler
from chickentender.app.models.order import Order, OrderParticipant
from chickentender.app.models.order_enums import (
    OrderState, JOINABLE_STATES, CANCELLABLE_STATES, STATE_SORT_RANK
)
from chickentender.app.models.scheduled_job import JobType
from chickentender.app.models.user import User
from chickentender.app.services.audit import log_event, AuditAction, Actor, SYSTEM_ACTOR
from chickentender.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


async def lock_order(db: AsyncSession, order_id: int) -> Order:
    """
    Load an order with its row locked for the rest of the transaction.

    Raises:
        ResourceNotFoundError: No such order
    """
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise ResourceNotFoundError("Order", order_id)
    return order


async def transition(
    db: AsyncSession,
    order_id: int,
    from_states: Iterable[OrderState],
    **values
) -> bool:
    """
    Conditionally update an order that is still in one of `from_states`.

    Returns:
        True when the row was updated, False when the order had already
        moved on (lost race)
    """
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.state.in_(list(from_states)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def validate_details(order_type: Optional[OrderType], details: Optional[Dict[str, str]]) -> Dict[str, str]:
    """
    Check a participant's field values against the order type.

    Every field of the type is required; a field that lists values only
    accepts one of them. Unknown keys are dropped.
    """
    details = details or {}
    if order_type is None:
        return {str(k): str(v) for k, v in details.items()}

    cleaned = {}
    for field in order_type.fields:
        value = details.get(field.name)
        if value is None or not str(value).strip():
            raise ValidationError(
                f"Field '{field.name}' is required",
                details={"field": field.name}
            )
        value = str(value).strip()
        if field.values and value not in field.values:
            raise ValidationError(
                f"'{value}' is not a valid choice for '{field.name}'",
                details={"field": field.name, "choices": field.values}
            )
        cleaned[field.name] = value
    return cleaned


class OrderService:

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int) -> Order:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise ResourceNotFoundError("Order", order_id)
        return order

    @staticmethod
    async def list_orders(
        db: AsyncSession,
        page: int = 1,
        page_size: int = 20,
        state: Optional[OrderState] = None
    ) -> Tuple[List[Order], int]:
        """
        One page of orders: closing first, then open, closed, archived and
        cancelled; newest close date first within a state.
        """
        rank = case(
            *[(Order.state == s, r) for s, r in STATE_SORT_RANK.items()],
            else_=len(STATE_SORT_RANK)
        )
        query = select(Order)
        count_query = select(func.count(Order.id))

        if state:
            query = query.where(Order.state == state)
            count_query = count_query.where(Order.state == state)

        query = query.order_by(rank, desc(Order.close_date), Order.location, Order.id)
        query = query.offset((page - 1) * page_size).limit(page_size)

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(query)
        return list(result.scalars().all()), total

    @staticmethod
    async def create_order(
        db: AsyncSession,
        order_type: str,
        close_date: datetime,
        actor: User
    ) -> Order:
        """
        Open a new order and schedule its two transitions.

        The closing-soon job fires settings.order_close_timeout_seconds
        before close_date (immediately if that is already past) and the
        close job fires at close_date.

        Raises:
            ValidationError: Unknown order type or close date not in the future
        """
        kind = settings.find_order_type(order_type)
        if kind is None:
            raise ValidationError(
                f"Unknown order type '{order_type}'",
                details={"order_types": [t.name for t in settings.order_types]}
            )

        close_date = to_naive_utc(close_date)
        if close_date <= utcnow():
            raise ValidationError("Close date must be in the future")

        order_id = await OrderService._create(db, kind, close_date, Actor.of(actor))

        await NotificationService.notify(
            db,
            "orderCreated",
            {"order_id": order_id, "location": kind.name, "close_date": close_date.isoformat()},
            lambda: NotificationService.enabled_users(db)
        )
        return await OrderService.get_order(db, order_id)

    @staticmethod
    @with_storage_retry
    async def _create(db: AsyncSession, kind: OrderType, close_date: datetime, actor: Actor) -> int:
        async with unit_of_work(db):
            order = Order(
                location=kind.name,
                description=kind.description,
                cost=kind.cost,
                state=OrderState.OPEN,
                open_date=utcnow(),
                close_date=close_date,
                created_by_id=actor.id
            )
            db.add(order)
            await db.flush()

            lead = timedelta(seconds=settings.order_close_timeout_seconds)
            await JobScheduler.schedule(db, JobType.CLOSING_ORDER, order.id, close_date - lead)
            await JobScheduler.schedule(db, JobType.CLOSE_ORDER, order.id, close_date)

            await log_event(
                db,
                action=AuditAction.ORDER_CREATED,
                log=f"{actor.label} created {kind.name} order {order.id} closing {close_date.isoformat()}",
                actor_id=actor.id,
                metadata={"order_id": order.id, "cost": kind.cost}
            )
            order_id = order.id

        logger.info("Order %s created by user %s", order_id, actor.id)
        return order_id

    @staticmethod
    async def join_order(
        db: AsyncSession,
        order_id: int,
        user: User,
        details: Optional[Dict[str, str]] = None
    ) -> Order:
        """
        Add a user to an OPEN or CLOSING order.

        Raises:
            ResourceNotFoundError: No such order
            OrderStateError: Order no longer accepts participants
            ValidationError: Already joined, or field values invalid
        """
        user_id = user.id
        try:
            await OrderService._join(db, order_id, user_id, details)
        except IntegrityError:
            # concurrent join by the same user won the unique constraint
            raise ValidationError(
                f"User {user_id} has already joined order {order_id}",
                details={"order_id": order_id, "user_id": user_id}
            )

        logger.info("User %s joined order %s", user_id, order_id)
        return await OrderService.get_order(db, order_id)

    @staticmethod
    @with_storage_retry
    async def _join(db: AsyncSession, order_id: int, user_id: int, details: Optional[Dict[str, str]]) -> None:
        async with unit_of_work(db):
            order = await lock_order(db, order_id)

            if order.state not in JOINABLE_STATES:
                raise OrderStateError(order_id, "be joined", order.state)

            if order.has_participant(user_id):
                raise ValidationError(
                    f"User {user_id} has already joined order {order_id}",
                    details={"order_id": order_id, "user_id": user_id}
                )

            cleaned = validate_details(settings.find_order_type(order.location), details)
            order.participants.append(
                OrderParticipant(user_id=user_id, details=cleaned, joined_at=utcnow())
            )
            await db.flush()

    @staticmethod
    async def leave_order(db: AsyncSession, order_id: int, user: User) -> Order:
        """
        Remove a user from an OPEN or CLOSING order.

        Raises:
            ResourceNotFoundError: No such order
            OrderStateError: Order no longer accepts changes
            ValidationError: User is not a participant
        """
        user_id = user.id
        await OrderService._leave(db, order_id, user_id)

        logger.info("User %s left order %s", user_id, order_id)
        return await OrderService.get_order(db, order_id)

    @staticmethod
    @with_storage_retry
    async def _leave(db: AsyncSession, order_id: int, user_id: int) -> None:
        async with unit_of_work(db):
            order = await lock_order(db, order_id)

            if order.state not in JOINABLE_STATES:
                raise OrderStateError(order_id, "be left", order.state)

            participant = next((p for p in order.participants if p.user_id == user_id), None)
            if participant is None:
                raise ValidationError(
                    f"User {user_id} is not a participant of order {order_id}",
                    details={"order_id": order_id, "user_id": user_id}
                )

            order.participants.remove(participant)
            await db.flush()

    @staticmethod
    async def _close_locked(db: AsyncSession, order: Order, actor: Actor) -> bool:
        # CLOSED with participants, straight to CANCELLED without
        target = OrderState.CLOSED if order.participants else OrderState.CANCELLED
        changed = await transition(db, order.id, JOINABLE_STATES, state=target, close_date=utcnow())
        if not changed:
            logger.info("Order %s already left %s, close skipped", order.id, order.state.value)
            return False

        await JobScheduler.cancel(db, order.id)

        action = AuditAction.ORDER_CLOSED if target == OrderState.CLOSED else AuditAction.ORDER_CANCELLED
        await log_event(
            db,
            action=action,
            log=f"{actor.label} closed order {order.id} with {len(order.participants)} participants: {target.value}",
            actor_id=actor.id,
            metadata={"order_id": order.id, "state": target.value}
        )
        return True

    @staticmethod
    async def close_order(db: AsyncSession, order_id: int, actor: User) -> Order:
        """
        Close an order now, ahead of its scheduled close.

        Raises:
            ResourceNotFoundError: No such order
            OrderStateError: Order is not OPEN or CLOSING
        """
        await OrderService._close(db, order_id, Actor.of(actor))
        return await OrderService.get_order(db, order_id)

    @staticmethod
    @with_storage_retry
    async def _close(db: AsyncSession, order_id: int, actor: Actor) -> bool:
        async with unit_of_work(db):
            order = await lock_order(db, order_id)
            if order.state not in JOINABLE_STATES:
                raise OrderStateError(order_id, "be closed", order.state)
            return await OrderService._close_locked(db, order, actor)

    @staticmethod
    @with_storage_retry
    async def close_on_schedule(db: AsyncSession, order_id: int) -> bool:
        """Scheduled close. A no-op when the order is gone or already closed."""
        async with unit_of_work(db):
            try:
                order = await lock_order(db, order_id)
            except ResourceNotFoundError:
                logger.warning("Scheduled close for missing order %s", order_id)
                return False

            if order.state not in JOINABLE_STATES:
                return False
            return await OrderService._close_locked(db, order, SYSTEM_ACTOR)

    @staticmethod
    async def mark_closing(db: AsyncSession, order_id: int) -> bool:
        """
        Scheduled OPEN -> CLOSING transition.

        Notifies enabled non-participants only when this call made the
        transition, so a re-fired job sends nothing.
        """
        snapshot = await OrderService._mark_closing(db, order_id)
        if snapshot is None:
            logger.info("Order %s is no longer OPEN, closing-soon skipped", order_id)
            return False

        location, close_date, participant_ids = snapshot
        minutes = max(0, round((close_date - utcnow()).total_seconds() / 60))
        await NotificationService.notify(
            db,
            "orderClosing",
            {"order_id": order_id, "location": location, "closing_minutes": minutes},
            lambda: NotificationService.enabled_users(db, exclude_ids=participant_ids)
        )
        return True

    @staticmethod
    @with_storage_retry
    async def _mark_closing(db: AsyncSession, order_id: int) -> Optional[Tuple[str, datetime, List[int]]]:
        async with unit_of_work(db):
            changed = await transition(db, order_id, [OrderState.OPEN], state=OrderState.CLOSING)
            if not changed:
                return None
            order = await lock_order(db, order_id)
            return order.location, order.close_date, order.participant_ids

    @staticmethod
    async def cancel_order(db: AsyncSession, order_id: int, actor: User) -> Order:
        """
        Cancel an OPEN, CLOSING or CLOSED order: participants are cleared
        and pending jobs removed.

        Raises:
            ResourceNotFoundError: No such order
            OrderStateError: Order is ARCHIVED or already CANCELLED
        """
        await OrderService._cancel(db, order_id, Actor.of(actor))
        return await OrderService.get_order(db, order_id)

    @staticmethod
    @with_storage_retry
    async def _cancel(db: AsyncSession, order_id: int, actor: Actor) -> bool:
        async with unit_of_work(db):
            order = await lock_order(db, order_id)
            if order.state not in CANCELLABLE_STATES:
                raise OrderStateError(order_id, "be cancelled", order.state)

            participant_count = len(order.participants)
            changed = await transition(
                db, order_id, CANCELLABLE_STATES,
                state=OrderState.CANCELLED, close_date=utcnow()
            )
            if changed:
                await db.execute(delete(OrderParticipant).where(OrderParticipant.order_id == order_id))
                await JobScheduler.cancel(db, order_id)
                await log_event(
                    db,
                    action=AuditAction.ORDER_CANCELLED,
                    log=f"{actor.label} cancelled order {order_id} ({participant_count} participants removed)",
                    actor_id=actor.id,
                    metadata={"order_id": order_id}
                )
            return changed


# Scheduler job type -> handler(db, order_id)
ORDER_JOB_HANDLERS = {
    JobType.CLOSING_ORDER: OrderService.mark_closing,
    JobType.CLOSE_ORDER: OrderService.close_on_schedule,
}
