"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL, and provides the
unit-of-work boundary used by every multi-write operation.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from chickentender.app.core.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for database sessions.

    Yields an async database session and ensures it's properly closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed reads and writes as one atomic transaction.

    Everything flushed inside the block commits together on normal exit;
    any exception rolls all of it back and propagates. On PostgreSQL the
    transaction runs at settings.db_transaction_isolation (REPEATABLE READ
    by default), so all enclosed reads see one consistent snapshot.

    Usage:
        async with unit_of_work(db):
            ...
    """
    if db.in_transaction():
        # Close out whatever autobegun read transaction preceded us so the
        # isolation level applies from the first statement of this unit.
        await db.commit()

    isolation = settings.db_transaction_isolation
    if isolation and db.bind.dialect.name == "postgresql":
        await db.connection(execution_options={"isolation_level": isolation})

    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
