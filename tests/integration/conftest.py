"""
Fixtures for integration tests.

Every test gets a fresh in-memory SQLite database with the full schema,
one session, an isolated event dispatcher and the engine facade.
"""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from settlement.models import Base
from settlement.services.events import EventDispatcher
from settlement.services.settlement_service import SettlementService
from tests.integration.fakes import EventRecorder, FakeChainWatcher, FakePayoutDispatcher


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as session:
        yield session


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def events(recorder) -> EventDispatcher:
    dispatcher = EventDispatcher()
    dispatcher.subscribe("*", recorder)
    return dispatcher


@pytest.fixture
def engine_service(session, settings, events) -> SettlementService:
    return SettlementService(session, settings, events)


@pytest.fixture
def make_user(engine_service):
    """Register a user through the facade."""

    async def factory(referrer_id=None, deposit_address=None, username=None):
        result = await engine_service.register_user(
            username=username,
            referrer_id=referrer_id,
            deposit_address=deposit_address,
        )
        assert result.success, result.error
        return result.data

    return factory


@pytest.fixture
def fund(engine_service):
    """Put funds in a bucket with an admin adjustment."""

    async def factory(user_id, bucket, amount):
        result = await engine_service.adjust_balance(
            user_id, bucket, Decimal(amount), "test funding", admin_id=99
        )
        assert result.success, result.error
        return result.data

    return factory


@pytest.fixture
def payout() -> FakePayoutDispatcher:
    return FakePayoutDispatcher()


@pytest.fixture
def watcher() -> FakeChainWatcher:
    return FakeChainWatcher()
