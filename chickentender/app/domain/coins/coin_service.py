"""
Coin Service (Domain Logic).

Peer-to-peer transfers and administrative balance overrides. Each is a
single ledger entry plus an audit record in one unit of work.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from chickentender.app.core.exceptions import (
    AppException, ValidationError, ResourceNotFoundError, TransactionFailedError
)
from chickentender.app.core.reliability import with_storage_retry
from chickentender.app.db.session import unit_of_work
from chickentender.app.domain.ledger.ledger_service import LedgerService
from chickentender.app.models.enums import Permission
from chickentender.app.models.ledger_entry import LedgerEntry
from chickentender.app.models.ledger_enums import LedgerEntryKind
from chickentender.app.models.user import User
from chickentender.app.services.audit import log_event, AuditAction, Actor
from chickentender.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    ledger_entry_id: int
    amount: int
    sender_balance: int
    recipient_balance: int


class CoinService:

    @staticmethod
    async def transfer(db: AsyncSession, sender: User, recipient_id: int, amount: int) -> TransferResult:
        """
        Move `amount` coins from the sender to another enabled user.

        Raises:
            ValidationError: Amount below 1, transfer to self, or amount
                above the sender's balance
            ResourceNotFoundError: Recipient missing or disabled
            TransactionFailedError: Any other failure; nothing was written
        """
        sender_id = sender.id
        if amount < 1:
            raise ValidationError("Transfer amount must be at least 1", details={"amount": amount})
        if recipient_id == sender_id:
            raise ValidationError("Cannot transfer coins to yourself")

        try:
            entry, source, target = await CoinService._transfer(db, sender_id, recipient_id, amount)
        except AppException:
            raise
        except Exception as e:
            logger.exception("Transfer of %d coins from user %s to user %s aborted", amount, sender_id, recipient_id)
            raise TransactionFailedError("transfer coins") from e

        logger.info("User %s transferred %d coins to user %s", source.id, amount, target.id)
        result = TransferResult(
            ledger_entry_id=entry.id,
            amount=amount,
            sender_balance=source.coins,
            recipient_balance=target.coins
        )

        await NotificationService.notify(
            db,
            "coinTransfer",
            {"source": source.full_name, "coins": amount, "target": target.full_name},
            [source, target],
            cc=lambda: NotificationService.users_with_permission(db, Permission.ADMIN)
        )
        return result

    @staticmethod
    @with_storage_retry
    async def _transfer(db: AsyncSession, sender_id: int, recipient_id: int, amount: int):
        async with unit_of_work(db):
            users = await LedgerService.lock_users(db, [sender_id, recipient_id])

            source = users.get(sender_id)
            if source is None:
                raise ResourceNotFoundError("User", sender_id)

            target = users.get(recipient_id)
            if target is None or not target.enabled:
                raise ResourceNotFoundError("User", recipient_id)

            # checked under the row lock, before any balance changes
            if amount > source.coins:
                raise ValidationError(
                    "Insufficient coins for transfer",
                    details={"balance": source.coins, "amount": amount}
                )

            entry = await LedgerService.post_entry(
                db,
                description=f"Transfer of {amount} coins from {source.full_name} to {target.full_name}",
                kind=LedgerEntryKind.COIN_TRANSFER,
                changes=[(source, -amount), (target, amount)]
            )
            await log_event(
                db,
                action=AuditAction.COINS_TRANSFERRED,
                log=f"{source.audit_label()} transferred {amount} coins to {target.audit_label()}",
                actor_id=source.id,
                target_user_id=target.id,
                metadata={"amount": amount, "ledger_entry_id": entry.id}
            )

        return entry, source, target

    @staticmethod
    async def force_set(db: AsyncSession, actor: User, user_id: int, new_balance: int) -> LedgerEntry:
        """
        Overwrite a user's balance. Not conserving; recorded as a single
        ledger line.

        Raises:
            ResourceNotFoundError: No such user
            TransactionFailedError: Any other failure; nothing was written
        """
        acting = Actor.of(actor)
        try:
            entry = await CoinService._force_set(db, acting, user_id, new_balance)
        except AppException:
            raise
        except Exception as e:
            logger.exception("Setting coins of user %s aborted", user_id)
            raise TransactionFailedError("set coins") from e

        logger.info("User %s set coins of user %s to %d", acting.id, user_id, new_balance)
        return entry

    @staticmethod
    @with_storage_retry
    async def _force_set(db: AsyncSession, actor: Actor, user_id: int, new_balance: int) -> LedgerEntry:
        async with unit_of_work(db):
            user = await LedgerService.lock_user(db, user_id)
            previous = user.coins

            entry = await LedgerService.post_entry(
                db,
                description=f"Balance of {user.full_name} set to {new_balance}",
                kind=LedgerEntryKind.FORCED_ADJUSTMENT,
                changes=[(user, new_balance - previous)]
            )
            await log_event(
                db,
                action=AuditAction.COINS_SET,
                log=f"{actor.label} set coins of {user.audit_label()} from {previous} to {new_balance}",
                actor_id=actor.id,
                target_user_id=user.id,
                metadata={"previous": previous, "new": new_balance, "ledger_entry_id": entry.id}
            )

        return entry
