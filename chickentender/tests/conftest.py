"""
Centralized Test Configuration.
"""

import pytest
from itertools import count
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from chickentender.app.main import app
from chickentender.app.db.session import get_db, Base
from chickentender.app.core.jwt import create_user_token
from chickentender.app.core.redis_client import get_redis
from chickentender.app.core.reliability import notification_circuit_breaker
from chickentender.app.models.enums import Permission
from chickentender.app.models.user import User
import chickentender.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}

# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()

@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by token revocation
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    notification_circuit_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session

_emails = count(1)

@pytest.fixture
def make_user(db_session):
    """Factory creating committed users."""
    async def _make_user(
        first_name: str = "Test",
        last_name: str = "User",
        coins: int = 0,
        enabled: bool = True,
        permissions: Permission = Permission.NONE
    ) -> User:
        user = User(
            email=f"{first_name.lower()}{next(_emails)}@example.com",
            first_name=first_name,
            last_name=last_name,
            coins=coins,
            enabled=enabled,
            permissions=int(permissions)
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user

@pytest.fixture
async def admin_user(make_user):
    return await make_user("Ada", "Admin", permissions=Permission.ADMIN | Permission.ORDER_CREATOR)

@pytest.fixture
async def creator_user(make_user):
    return await make_user("Carl", "Creator", permissions=Permission.ORDER_CREATOR)

@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_user_token(user)}"}
    return _auth_headers

@pytest.fixture
def make_order(db_session):
    """Factory inserting an order directly in a given state."""
    from chickentender.app.core.clock import utcnow
    from chickentender.app.models.order import Order, OrderParticipant
    from chickentender.app.models.order_enums import OrderState

    async def _make_order(
        participants=(),
        cost: int = 1,
        state: OrderState = OrderState.CLOSED,
        location: str = "Chicken Tenders"
    ) -> Order:
        now = utcnow()
        order = Order(
            location=location,
            description=f"{location} for the floor",
            cost=cost,
            state=state,
            open_date=now,
            close_date=now,
            participants=[
                OrderParticipant(user_id=user.id, details={"Sauce": "BBQ", "Side": "Fries"}, joined_at=now)
                for user in participants
            ]
        )
        db_session.add(order)
        await db_session.commit()
        return order
    return _make_order

@pytest.fixture
def refresh(db_session):
    """Reload instances expired by a rolled-back unit of work."""
    async def _refresh(*instances):
        for instance in instances:
            await db_session.refresh(instance)
    return _refresh

@pytest.fixture
def session_factory():
    """Session factory for code that opens its own sessions (scheduler worker)."""
    return TestingSessionLocal
