"""
Coin transfer, balance override and ledger tests.
"""

import pytest
from sqlalchemy import select, func

from chickentender.app.core.exceptions import ValidationError, ResourceNotFoundError
from chickentender.app.domain.coins.coin_service import CoinService
from chickentender.app.domain.ledger.ledger_service import LedgerService, UnbalancedLedgerEntryError
from chickentender.app.models.audit_log import AuditLog
from chickentender.app.models.ledger_entry import LedgerEntry
from chickentender.app.models.ledger_enums import LedgerEntryKind
from chickentender.app.models.notification import Notification
from chickentender.app.services.audit import AuditAction


async def count_entries(db):
    return (await db.execute(select(func.count(LedgerEntry.id)))).scalar()


@pytest.mark.asyncio
async def test_transfer_moves_coins(db_session, make_user, admin_user, refresh):
    alice = await make_user("Alice", coins=10)
    bob = await make_user("Bob")

    result = await CoinService.transfer(db_session, alice, bob.id, 5)

    assert result.amount == 5
    assert result.sender_balance == 5
    assert result.recipient_balance == 5

    await refresh(alice, bob)
    assert (alice.coins, bob.coins) == (5, 5)

    entry = (await db_session.execute(select(LedgerEntry))).scalar_one()
    assert entry.id == result.ledger_entry_id
    assert entry.kind == LedgerEntryKind.COIN_TRANSFER
    assert {line.user_id: line.delta for line in entry.lines} == {alice.id: -5, bob.id: 5}

    audit = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.COINS_TRANSFERRED)
    )).scalar_one()
    assert audit.actor_id == alice.id
    assert audit.target_user_id == bob.id

    # sender and recipient are told; admins are copied
    rows = (await db_session.execute(
        select(Notification.user_id, Notification.is_cc)
        .where(Notification.template == "coinTransfer")
    )).all()
    assert sorted(rows) == sorted([(alice.id, False), (bob.id, False), (admin_user.id, True)])


@pytest.mark.asyncio
async def test_transfer_above_balance_is_rejected(db_session, make_user, refresh):
    alice = await make_user("Alice", coins=10)
    bob = await make_user("Bob")
    bob_id = bob.id

    with pytest.raises(ValidationError):
        await CoinService.transfer(db_session, alice, bob_id, 11)

    await refresh(alice, bob)
    assert (alice.coins, bob.coins) == (10, 0)
    assert await count_entries(db_session) == 0


@pytest.mark.asyncio
async def test_transfer_input_checks(db_session, make_user, refresh):
    alice = await make_user("Alice", coins=10)
    bob = await make_user("Bob")
    gone = await make_user("Gone", enabled=False)
    bob_id, gone_id = bob.id, gone.id

    with pytest.raises(ValidationError):
        await CoinService.transfer(db_session, alice, bob_id, 0)

    with pytest.raises(ValidationError):
        await CoinService.transfer(db_session, alice, alice.id, 1)

    with pytest.raises(ResourceNotFoundError):
        await CoinService.transfer(db_session, alice, gone_id, 1)

    await refresh(alice)
    with pytest.raises(ResourceNotFoundError):
        await CoinService.transfer(db_session, alice, 9999, 1)

    await refresh(alice)
    assert alice.coins == 10
    assert await count_entries(db_session) == 0


@pytest.mark.asyncio
async def test_transfer_of_entire_balance(db_session, make_user, refresh):
    alice = await make_user("Alice", coins=3)
    bob = await make_user("Bob", coins=-2)

    result = await CoinService.transfer(db_session, alice, bob.id, 3)

    assert result.sender_balance == 0
    assert result.recipient_balance == 1


@pytest.mark.asyncio
async def test_force_set_writes_single_line(db_session, admin_user, make_user, refresh):
    bob = await make_user("Bob", coins=4)

    entry = await CoinService.force_set(db_session, admin_user, bob.id, -7)

    assert entry.kind == LedgerEntryKind.FORCED_ADJUSTMENT
    assert len(entry.lines) == 1
    line = entry.lines[0]
    assert (line.user_id, line.previous_value, line.new_value) == (bob.id, 4, -7)

    await refresh(bob)
    assert bob.coins == -7

    audit = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.COINS_SET)
    )).scalar_one()
    assert audit.actor_id == admin_user.id
    assert audit.meta_data["previous"] == 4
    assert audit.meta_data["new"] == -7


@pytest.mark.asyncio
async def test_force_set_unknown_user(db_session, admin_user):
    with pytest.raises(ResourceNotFoundError):
        await CoinService.force_set(db_session, admin_user, 9999, 1)


@pytest.mark.asyncio
async def test_unbalanced_conserving_entry_is_refused(db_session, make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")

    with pytest.raises(UnbalancedLedgerEntryError):
        await LedgerService.post_entry(
            db_session,
            description="broken",
            kind=LedgerEntryKind.COIN_TRANSFER,
            changes=[(alice, -2), (bob, 3)]
        )

    with pytest.raises(ValueError):
        await LedgerService.post_entry(
            db_session,
            description="duplicate",
            kind=LedgerEntryKind.FORCED_ADJUSTMENT,
            changes=[(alice, 1), (alice, 1)]
        )


@pytest.mark.asyncio
async def test_list_entries_newest_first_with_user_filter(db_session, admin_user, make_user):
    alice = await make_user("Alice", coins=10)
    bob = await make_user("Bob")
    cleo = await make_user("Cleo")
    alice_id, bob_id, cleo_id = alice.id, bob.id, cleo.id

    first = await CoinService.transfer(db_session, alice, bob_id, 2)
    second = await CoinService.transfer(db_session, alice, cleo_id, 3)
    third = await CoinService.force_set(db_session, admin_user, bob_id, 0)

    entries, total = await LedgerService.list_entries(db_session)
    assert total == 3
    assert [e.id for e in entries] == [third.id, second.ledger_entry_id, first.ledger_entry_id]

    entries, total = await LedgerService.list_entries(db_session, user_id=bob_id)
    assert total == 2
    assert [e.id for e in entries] == [third.id, first.ledger_entry_id]

    entries, total = await LedgerService.list_entries(db_session, page=2, page_size=2)
    assert total == 3
    assert [e.id for e in entries] == [first.ledger_entry_id]

    _, total = await LedgerService.list_entries(db_session, user_id=alice_id)
    assert total == 2
