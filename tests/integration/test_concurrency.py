"""
Concurrency tests on a file-backed SQLite database.

Each competing call runs in its own session and connection, so the
conditional balance update and the quorum crossing are decided by the
database and not by the identity map of a shared session.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from settlement.models import Base
from settlement.models.enums import TransactionType
from settlement.models.withdrawal import Withdrawal
from settlement.services.events import EventDispatcher
from settlement.services.ledger.ledger_service import LedgerService
from settlement.services.settlement_service import SettlementService
from settlement.services.withdrawal.withdrawal_lifecycle_handler import (
    WithdrawalLifecycleHandler,
)
from settlement.utils.exceptions import InsufficientFunds, InvalidTransition
from tests.helpers import PAYOUT_ADDRESS


@pytest.fixture
async def shared_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(shared_engine):
    return async_sessionmaker(shared_engine, expire_on_commit=False)


@pytest.fixture
def funded_user(session_maker, settings):
    """User with ``amount`` in the bonus bucket, set up in its own session."""

    async def factory(amount):
        async with session_maker() as session:
            service = SettlementService(session, settings, EventDispatcher())
            user = (await service.register_user()).data
            user_id = user.id
            result = await service.adjust_balance(
                user_id, "bonus", Decimal(amount), "test funding", admin_id=99
            )
            assert result.success, result.error
            return user_id

    return factory


class TestConcurrentDebits:
    """Two debits racing for one balance."""

    @pytest.mark.asyncio
    async def test_only_one_debit_fits(self, session_maker, settings, funded_user):
        """Debits of 60 and 60 against 100: exactly one is refused."""
        user_id = await funded_user("100")

        async def debit_60():
            async with session_maker() as session:
                ledger = LedgerService(session, settings, EventDispatcher())
                try:
                    await ledger.debit(
                        user_id, "bonus", Decimal("60"), TransactionType.ADJUSTMENT
                    )
                    await ledger.commit()
                    return "debited"
                except InsufficientFunds:
                    await ledger.rollback()
                    return "refused"

        results = await asyncio.gather(debit_60(), debit_60())

        assert sorted(results) == ["debited", "refused"]
        async with session_maker() as session:
            service = SettlementService(session, settings, EventDispatcher())
            balances = (await service.get_balances(user_id)).data
            assert balances["bonus"] == Decimal("40")
            assert (await service.verify_user_balances(user_id)).success


class TestConcurrentApprovals:
    """Two admins completing the quorum at the same time."""

    @pytest.mark.asyncio
    async def test_quorum_crossed_once(self, session_maker, settings, funded_user):
        user_id = await funded_user("500")
        async with session_maker() as session:
            service = SettlementService(session, settings, EventDispatcher())
            created = await service.create_withdrawal(
                user_id, Decimal("100"), PAYOUT_ADDRESS
            )
            assert created.success, created.error
            withdrawal_id = created.data.id
            required = created.data.required_approvals
            # All but the last approval come in one after another
            for admin_id in range(1, required):
                assert (await service.approve_withdrawal(withdrawal_id, admin_id)).success

        async def approve(admin_id):
            async with session_maker() as session:
                handler = WithdrawalLifecycleHandler(
                    session, settings, EventDispatcher()
                )
                return await handler.approve(withdrawal_id, admin_id)

        results = await asyncio.gather(
            approve(100), approve(101), return_exceptions=True
        )

        crossings = [
            r for r in results if not isinstance(r, Exception) and r.quorum_reached
        ]
        assert len(crossings) == 1
        for result in results:
            if isinstance(result, Exception):
                assert isinstance(result, InvalidTransition)
        async with session_maker() as session:
            withdrawal = (await session.execute(
                select(Withdrawal).where(Withdrawal.id == withdrawal_id)
            )).scalar_one()
            assert withdrawal.status == "approved"
            assert withdrawal.approved_at is not None
