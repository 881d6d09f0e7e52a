"""
Settlement Service (Domain Logic).

Logs a CLOSED order: every participant other than the purchaser is
debited the order cost, the purchaser is credited what the others paid,
the ledger entry and audit record are written and the order is ARCHIVED,
all in one unit of work. Participants are notified after commit.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from chickentender.app.core.exceptions import (
    AppException, ValidationError, OrderStateError, ResourceNotFoundError, TransactionFailedError
)
from chickentender.app.core.reliability import with_storage_retry
from chickentender.app.db.session import unit_of_work
from chickentender.app.domain.ledger.ledger_service import LedgerService
from chickentender.app.domain.orders.order_service import OrderService, lock_order, transition
from chickentender.app.models.enums import Permission
from chickentender.app.models.ledger_enums import LedgerEntryKind
from chickentender.app.models.order import Order
from chickentender.app.models.order_enums import OrderState
from chickentender.app.models.user import User
from chickentender.app.services.audit import log_event, AuditAction, Actor
from chickentender.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementPlan:
    """Coin movements of a settlement, decided before anything is written."""
    purchaser_id: int
    participant_ids: Sequence[int]
    deltas: Dict[int, int]

    @property
    def total_cost(self) -> int:
        return sum(-delta for delta in self.deltas.values() if delta < 0)


@dataclass(frozen=True)
class SettlementResult:
    order: Order
    ledger_entry_id: int
    plan: SettlementPlan


def compute_settlement(cost: int, participant_ids: Sequence[int], purchaser_id: int) -> SettlementPlan:
    """
    Work out each user's balance change.

    Every participant except the purchaser pays `cost`; the purchaser is
    credited the sum of those debits, so the deltas always sum to zero
    whether or not the purchaser took part.

    Raises:
        ValidationError: The order has no participants
    """
    if not participant_ids:
        raise ValidationError("An order without participants cannot be settled")

    debited = [user_id for user_id in participant_ids if user_id != purchaser_id]
    deltas = {user_id: -cost for user_id in debited}
    deltas[purchaser_id] = cost * len(debited)
    return SettlementPlan(
        purchaser_id=purchaser_id,
        participant_ids=tuple(participant_ids),
        deltas=deltas
    )


class SettlementService:

    @staticmethod
    async def settle_order(
        db: AsyncSession,
        order_id: int,
        purchaser_id: int,
        actor: User
    ) -> SettlementResult:
        """
        Settle (log) a CLOSED order.

        Raises:
            ResourceNotFoundError: No such order or purchaser
            OrderStateError: Order is not CLOSED (including already settled)
            ValidationError: No participants, or purchaser is disabled
            TransactionFailedError: Any other failure; nothing was written
        """
        try:
            order, entry_id, plan, users = await SettlementService._settle(
                db, order_id, purchaser_id, Actor.of(actor)
            )
        except AppException:
            raise
        except Exception as e:
            logger.exception("Settlement of order %s aborted", order_id)
            raise TransactionFailedError(f"settle order {order_id}") from e

        logger.info(
            "Order %s settled: purchaser %s, %d participants",
            order_id, purchaser_id, len(plan.participant_ids)
        )

        await NotificationService.notify(
            db,
            "loggedOrder",
            {
                "order_id": order_id,
                "purchaser": users[purchaser_id].full_name,
                "location": order.location,
                "participant_count": len(plan.participant_ids),
                "cost": order.cost,
            },
            [users[user_id] for user_id in plan.participant_ids],
            cc=lambda: NotificationService.users_with_permission(db, Permission.ORDER_CREATOR)
        )

        order = await OrderService.get_order(db, order_id)
        return SettlementResult(order=order, ledger_entry_id=entry_id, plan=plan)

    @staticmethod
    @with_storage_retry
    async def _settle(db: AsyncSession, order_id: int, purchaser_id: int, actor: Actor):
        async with unit_of_work(db):
            order = await lock_order(db, order_id)
            if order.state != OrderState.CLOSED:
                raise OrderStateError(order_id, "be settled", order.state)

            plan = compute_settlement(order.cost, order.participant_ids, purchaser_id)

            users = await LedgerService.lock_users(db, plan.deltas.keys())
            purchaser = users.get(purchaser_id)
            if purchaser is None:
                raise ResourceNotFoundError("Purchaser", purchaser_id)
            if not purchaser.enabled:
                raise ValidationError(
                    f"Purchaser {purchaser_id} is disabled",
                    details={"purchaser_id": purchaser_id}
                )

            # state and purchaser change together: purchaser is set iff ARCHIVED
            if not await transition(
                db, order_id, [OrderState.CLOSED],
                state=OrderState.ARCHIVED, purchaser_id=purchaser_id
            ):
                raise OrderStateError(order_id, "be settled")

            entry = await LedgerService.post_entry(
                db,
                description=f"{order.location} order {order_id} purchased by {purchaser.full_name}",
                kind=LedgerEntryKind.ORDER_SETTLEMENT,
                changes=[(users[user_id], delta) for user_id, delta in sorted(plan.deltas.items())],
                order_id=order_id
            )

            participants = ", ".join(users[user_id].audit_label() for user_id in plan.participant_ids)
            await log_event(
                db,
                action=AuditAction.ORDER_LOGGED,
                log=(
                    f"{actor.label} logged order {order_id} ({order.location}, cost {order.cost}, "
                    f"closed {order.close_date.isoformat()}) "
                    f"purchased by {purchaser.audit_label()} for [{participants}]"
                ),
                actor_id=actor.id,
                target_user_id=purchaser_id,
                metadata={
                    "order_id": order_id,
                    "ledger_entry_id": entry.id,
                    "close_date": order.close_date.isoformat(),
                    "cost": order.cost,
                    "deltas": {str(k): v for k, v in plan.deltas.items()},
                }
            )

        return order, entry.id, plan, users
