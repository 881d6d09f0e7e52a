"""
Data-shape upgrades.

Runs once at startup, after tables are created and before requests are
served. The database records its version in the schema_version table; a
database with no record is at version 1. Each step runs in its own
transaction together with the version bump.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from chickentender.app.core.config import settings
from chickentender.app.db.session import unit_of_work
from chickentender.app.models.schema_version import SchemaVersion
from chickentender.app.models.user import User

logger = logging.getLogger(__name__)

UpgradeFunc = Callable[[AsyncSession], Awaitable[None]]


class MissingUpgradeStepError(RuntimeError):
    pass


async def upgrade_1_to_2(db: AsyncSession) -> None:
    """Users existing before account activation was introduced are enabled."""
    await db.execute(update(User).values(enabled=True))


# from version -> (to version, upgrade)
UPGRADE_STEPS: Dict[int, Tuple[int, UpgradeFunc]] = {
    1: (2, upgrade_1_to_2),
}


async def get_version_record(db: AsyncSession) -> SchemaVersion:
    result = await db.execute(select(SchemaVersion).order_by(SchemaVersion.id).limit(1))
    record = result.scalar_one_or_none()
    if record is None:
        record = SchemaVersion(id=1, version=1)
        db.add(record)
        await db.flush()
    return record


async def upgrade_database(
    db: AsyncSession,
    target_version: Optional[int] = None,
    steps: Optional[Dict[int, Tuple[int, UpgradeFunc]]] = None
) -> int:
    """
    Apply upgrade steps until the database reaches `target_version`.

    Returns:
        The version the database is at afterwards

    Raises:
        MissingUpgradeStepError: No step starts at the current version
    """
    target_version = target_version or settings.schema_target_version
    steps = UPGRADE_STEPS if steps is None else steps

    async with unit_of_work(db):
        record = await get_version_record(db)
        version = record.version

    while version != target_version:
        if version not in steps:
            raise MissingUpgradeStepError(f"No upgrade step from version {version}")

        to_version, upgrade = steps[version]
        logger.info("Upgrading database from version %d to %d", version, to_version)

        async with unit_of_work(db):
            await upgrade(db)
            record = await get_version_record(db)
            record.version = to_version

        version = to_version

    logger.info("Database schema at version %d", version)
    return version
