"""
Startup data upgrade tests.
"""

import pytest
from sqlalchemy import select

from chickentender.app.db.migrations import upgrade_database, MissingUpgradeStepError
from chickentender.app.models.schema_version import SchemaVersion


async def current_version(db):
    result = await db.execute(
        select(SchemaVersion.version).order_by(SchemaVersion.id).limit(1)
    )
    return result.scalar_one_or_none()


@pytest.mark.asyncio
async def test_fresh_database_upgrades_and_enables_users(db_session, make_user, refresh):
    pending = await make_user("Pending", enabled=False)

    assert await current_version(db_session) is None
    assert await upgrade_database(db_session, target_version=2) == 2

    assert await current_version(db_session) == 2
    await refresh(pending)
    assert pending.enabled is True


@pytest.mark.asyncio
async def test_upgrade_is_noop_at_target(db_session, make_user, refresh):
    await upgrade_database(db_session, target_version=2)
    newcomer = await make_user("New", enabled=False)

    assert await upgrade_database(db_session, target_version=2) == 2

    # only the 1 -> 2 step enables users
    await refresh(newcomer)
    assert newcomer.enabled is False


@pytest.mark.asyncio
async def test_missing_step_is_fatal(db_session):
    with pytest.raises(MissingUpgradeStepError):
        await upgrade_database(db_session, target_version=3)

    # the step that did exist is kept
    assert await current_version(db_session) == 2


@pytest.mark.asyncio
async def test_custom_steps_run_in_order(db_session):
    ran = []

    def step(name):
        async def _upgrade(db):
            ran.append(name)
        return _upgrade

    steps = {1: (2, step("1->2")), 2: (3, step("2->3"))}

    assert await upgrade_database(db_session, target_version=3, steps=steps) == 3
    assert ran == ["1->2", "2->3"]
    assert await current_version(db_session) == 3
