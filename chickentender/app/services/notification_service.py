"""
Notification Service.

Sends mail-style notifications (template + context) to users through the
in-app notification table, and manages read state.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, desc, func
from typing import Optional, Dict, Any, Iterable, List, Sequence, Callable, Awaitable, Union

from chickentender.app.core.clock import utcnow
from chickentender.app.core.reliability import notification_circuit_breaker
from chickentender.app.models.notification import Notification, NotificationType
from chickentender.app.models.user import User
from chickentender.app.models.enums import Permission

logger = logging.getLogger(__name__)

# a user list, or a no-argument coroutine function that looks one up
Recipients = Union[Iterable[User], Callable[[], Awaitable[Iterable[User]]]]


async def resolve_recipients(recipients: Recipients) -> List[User]:
    if callable(recipients):
        return list(await recipients())
    return list(recipients)


# template name -> (type, title, message); formatted with the send context
MAIL_TEMPLATES = {
    "orderCreated": (
        NotificationType.ORDER_UPDATE,
        "New {location} order",
        "A new {location} order is open until {close_date}.",
    ),
    "orderClosing": (
        NotificationType.ORDER_UPDATE,
        "{location} order closing soon",
        "The {location} order closes in {closing_minutes} minutes. Join now if you want in.",
    ),
    "loggedOrder": (
        NotificationType.COIN_UPDATE,
        "{location} order logged",
        "{purchaser} bought the {location} order for {participant_count} participants "
        "at {cost} coins each.",
    ),
    "coinTransfer": (
        NotificationType.COIN_UPDATE,
        "Coin transfer",
        "{source} transferred {coins} coins to {target}.",
    ),
}


class NotificationService:

    @staticmethod
    async def send_mail(
        db: AsyncSession,
        template: str,
        context: Dict[str, Any],
        recipients: Iterable[User],
        cc: Iterable[User] = ()
    ) -> int:
        """
        Render a template and queue it for every recipient and cc recipient.

        A user listed in both recipients and cc gets a single copy.

        Returns:
            Number of notifications created
        """
        if template not in MAIL_TEMPLATES:
            raise ValueError(f"Unknown mail template: {template}")

        notif_type, title_fmt, message_fmt = MAIL_TEMPLATES[template]
        title = title_fmt.format(**context)
        message = message_fmt.format(**context)

        seen = set()
        notifications = []
        for users, is_cc in ((recipients, False), (cc, True)):
            for user in users:
                if user.id in seen:
                    continue
                seen.add(user.id)
                notifications.append(
                    Notification(
                        user_id=user.id,
                        template=template,
                        type=notif_type,
                        title=title,
                        message=message,
                        metadata_payload=context,
                        is_cc=is_cc
                    )
                )

        if notifications:
            db.add_all(notifications)
            await db.flush()

        return len(notifications)

    @staticmethod
    async def notify(
        db: AsyncSession,
        template: str,
        context: Dict[str, Any],
        recipients: Recipients,
        cc: Recipients = ()
    ) -> bool:
        """
        Best-effort send in its own transaction.

        Used after the caller's unit of work has committed: any failure is
        logged and swallowed so it can never undo the committed change.
        Recipient lookups passed as coroutine functions run inside the same
        guard, so a failing lookup is swallowed too.
        """
        async def deliver():
            to = await resolve_recipients(recipients)
            copies = await resolve_recipients(cc)
            count = await NotificationService.send_mail(db, template, context, to, copies)
            await db.commit()
            return count

        try:
            count = await notification_circuit_breaker.call(deliver)
        except Exception as e:
            logger.error("Error sending %s notification: %s", template, e)
            try:
                await db.rollback()
            except Exception as rollback_error:
                logger.error("Rollback after failed %s notification failed: %s", template, rollback_error)
            return False

        logger.info("Sent %s notification to %d users", template, count)
        return True

    @staticmethod
    async def enabled_users(db: AsyncSession, exclude_ids: Sequence[int] = ()) -> List[User]:
        """All enabled users, optionally excluding some ids."""
        query = select(User).where(User.enabled == True)
        if exclude_ids:
            query = query.where(User.id.not_in(list(exclude_ids)))
        result = await db.execute(query.order_by(User.id))
        return list(result.scalars().all())

    @staticmethod
    async def users_with_permission(db: AsyncSession, permission: Permission) -> List[User]:
        """Enabled users holding the given permission flag."""
        result = await db.execute(
            select(User).where(
                User.enabled == True,
                User.permissions.op("&")(int(permission)) != 0
            ).order_by(User.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)
        query = query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def unread_count(db: AsyncSession, user_id: int) -> int:
        result = await db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read == False
            )
        )
        return result.scalar() or 0

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark a notification as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(
            is_read=True,
            read_at=utcnow()
        )
        result = await db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        """Mark all notifications for user as read."""
        stmt = update(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).values(
            is_read=True,
            read_at=utcnow()
        )
        result = await db.execute(stmt)
        return result.rowcount
