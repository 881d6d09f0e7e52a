"""
Ledger Service (Domain Logic).

The only place coin balances change. Every balance change is written
together with a ledger line recording the previous and new value, inside
the caller's unit of work.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc, func

from chickentender.app.core.clock import utcnow
from chickentender.app.core.exceptions import ResourceNotFoundError
from chickentender.app.models.ledger_entry import LedgerEntry, LedgerEntryLine
from chickentender.app.models.ledger_enums import LedgerEntryKind, CONSERVING_KINDS
from chickentender.app.models.user import User


class UnbalancedLedgerEntryError(ValueError):
    """A conserving ledger entry whose deltas do not sum to zero."""


class LedgerService:

    @staticmethod
    async def lock_users(db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, User]:
        """
        Load and row-lock users for a balance change.

        Rows are locked in id order so concurrent units of work touching
        overlapping users cannot deadlock. Missing ids are simply absent
        from the result.
        """
        ids = sorted(set(user_ids))
        if not ids:
            return {}

        result = await db.execute(
            select(User)
            .where(User.id.in_(ids))
            .order_by(User.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {user.id: user for user in result.scalars().all()}

    @staticmethod
    async def lock_user(db: AsyncSession, user_id: int) -> User:
        users = await LedgerService.lock_users(db, [user_id])
        if user_id not in users:
            raise ResourceNotFoundError("User", user_id)
        return users[user_id]

    @staticmethod
    async def post_entry(
        db: AsyncSession,
        description: str,
        kind: LedgerEntryKind,
        changes: Sequence[Tuple[User, int]],
        order_id: Optional[int] = None
    ) -> LedgerEntry:
        """
        Apply balance deltas and record them as one ledger entry.

        Args:
            db: Database session (caller owns the unit of work)
            description: Human-readable description of the entry
            kind: What produced the entry
            changes: (locked user, delta) pairs, one per distinct user
            order_id: Settled order, if any

        Returns:
            Created LedgerEntry with its lines

        Raises:
            ValueError: A user appears twice
            UnbalancedLedgerEntryError: Conserving kind whose deltas don't sum to zero
        """
        user_ids = [user.id for user, _ in changes]
        if len(set(user_ids)) != len(user_ids):
            raise ValueError("Each user may appear at most once in a ledger entry")

        if kind in CONSERVING_KINDS and sum(delta for _, delta in changes) != 0:
            raise UnbalancedLedgerEntryError(
                f"{kind.value} entry does not balance: {[delta for _, delta in changes]}"
            )

        entry = LedgerEntry(
            description=description,
            kind=kind,
            order_id=order_id,
            date=utcnow()
        )

        for user, delta in changes:
            previous_value = user.coins
            user.coins = previous_value + delta
            entry.lines.append(
                LedgerEntryLine(
                    user_id=user.id,
                    previous_value=previous_value,
                    new_value=user.coins
                )
            )

        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        page: int = 1,
        page_size: int = 20,
        user_id: Optional[int] = None
    ) -> Tuple[List[LedgerEntry], int]:
        """
        One page of ledger entries, newest first.

        Args:
            db: Database session
            page: 1-based page number
            page_size: Entries per page
            user_id: Only entries touching this user

        Returns:
            (entries on the page, total matching entries)
        """
        query = select(LedgerEntry)
        count_query = select(func.count(LedgerEntry.id))

        if user_id:
            touching = select(LedgerEntryLine.entry_id).where(LedgerEntryLine.user_id == user_id)
            query = query.where(LedgerEntry.id.in_(touching))
            count_query = count_query.where(LedgerEntry.id.in_(touching))

        query = query.order_by(desc(LedgerEntry.date), desc(LedgerEntry.id))
        query = query.offset((page - 1) * page_size).limit(page_size)

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(query)
        return list(result.scalars().all()), total
