"""Integration tests for the daily bonus distribution and the retry sweep."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from settlement.models.bonus import Bonus
from settlement.models.user import User
from tests.helpers import tx_hash


BONUS_DATE = date(2026, 10, 19)


@pytest.fixture
def depositor(engine_service, make_user):
    """User with a confirmed deposit of the given size."""
    counter = iter(range(1000, 2000))

    async def factory(amount):
        user_id = (await make_user()).id
        result = await engine_service.create_deposit(
            user_id, tx_hash(next(counter)), Decimal(amount), confirmations=19
        )
        assert result.data.status == "confirmed"
        return user_id

    return factory


async def bonuses_by_user(session):
    stmt = select(Bonus).order_by(Bonus.user_id).execution_options(populate_existing=True)
    return {b.user_id: b for b in (await session.execute(stmt)).scalars().all()}


class TestDailyDistribution:
    """Profit share across depositors."""

    @pytest.mark.asyncio
    async def test_pool_split_by_deposit_balance(
        self, engine_service, session, depositor, recorder
    ):
        """Deposits of 300 and 700 with profit 1000 at 70% receive 210 and 490."""
        small = await depositor("300")
        large = await depositor("700")

        result = await engine_service.calculate_daily_bonuses(Decimal("1000"), BONUS_DATE)

        assert result.success
        summary = result.data
        assert summary.pool == Decimal("700")
        assert summary.distributed == Decimal("700")
        assert summary.recipients == 2
        assert summary.retained == Decimal("0")
        assert not summary.failed

        small_balances = (await engine_service.get_balances(small)).data
        large_balances = (await engine_service.get_balances(large)).data
        assert small_balances["bonus"] == Decimal("210")
        assert large_balances["bonus"] == Decimal("490")
        # Deposits stay untouched
        assert small_balances["deposit"] == Decimal("300")

        bonuses = await bonuses_by_user(session)
        assert bonuses[small].status == "distributed"
        assert bonuses[small].transaction_id is not None
        assert bonuses[small].batch_id == summary.batch_id
        assert bonuses[large].deposit_balance == Decimal("700")
        assert recorder.names().count("bonus.distributed") == 2

    @pytest.mark.asyncio
    async def test_rerun_for_same_day_pays_nothing_new(
        self, engine_service, session, depositor
    ):
        small = await depositor("300")
        await depositor("700")
        first = (await engine_service.calculate_daily_bonuses(
            Decimal("1000"), BONUS_DATE
        )).data

        second = (await engine_service.calculate_daily_bonuses(
            Decimal("1000"), BONUS_DATE
        )).data

        assert second.batch_id == first.batch_id
        assert second.recipients == 0
        assert second.skipped == 2
        assert second.distributed == Decimal("700")
        count = (await session.execute(select(func.count(Bonus.id)))).scalar_one()
        assert count == 2
        balances = (await engine_service.get_balances(small)).data
        assert balances["bonus"] == Decimal("210")

    @pytest.mark.asyncio
    async def test_rerun_after_new_depositor_stays_within_pool(
        self, engine_service, session, depositor
    ):
        """A depositor joining after the first run gets nothing from that day."""
        early = await depositor("300")
        first = (await engine_service.calculate_daily_bonuses(
            Decimal("1000"), BONUS_DATE
        )).data
        assert first.distributed == Decimal("700")

        late = await depositor("700")
        second = (await engine_service.calculate_daily_bonuses(
            Decimal("1000"), BONUS_DATE
        )).data

        assert second.pool == Decimal("700")
        assert second.total_eligible_balance == Decimal("300")
        assert second.distributed == Decimal("700")
        assert second.retained == Decimal("0")
        assert second.recipients == 0
        bonuses = await bonuses_by_user(session)
        assert late not in bonuses
        assert sum(b.amount for b in bonuses.values()) <= second.pool
        assert (await engine_service.get_balances(early)).data["bonus"] == Decimal("700")
        assert (await engine_service.get_balances(late)).data["bonus"] == Decimal("0")

    @pytest.mark.asyncio
    async def test_rerun_with_different_profit_is_refused(
        self, engine_service, session, depositor
    ):
        user_id = await depositor("300")
        await engine_service.calculate_daily_bonuses(Decimal("1000"), BONUS_DATE)

        result = await engine_service.calculate_daily_bonuses(
            Decimal("2000"), BONUS_DATE
        )

        assert not result.success
        assert result.error_code == "invalid_amount"
        count = (await session.execute(select(func.count(Bonus.id)))).scalar_one()
        assert count == 1
        assert (await engine_service.get_balances(user_id)).data["bonus"] == Decimal("700")

    @pytest.mark.asyncio
    async def test_rerun_finishes_calculated_rows(
        self, engine_service, session, depositor
    ):
        """Rows left calculated by an interrupted run are paid on the next one."""
        small = await depositor("300")
        large = await depositor("700")
        await session.execute(
            update(User).where(User.id == large).values(ledger_frozen=True)
        )
        await session.commit()
        await engine_service.calculate_daily_bonuses(Decimal("1000"), BONUS_DATE)
        # Leave the large share calculated with no credit, as if the run stopped
        await session.execute(
            update(Bonus)
            .where(Bonus.user_id == large)
            .values(status="calculated", failure_reason=None)
        )
        await session.execute(
            update(User).where(User.id == large).values(ledger_frozen=False)
        )
        await session.commit()

        summary = (await engine_service.calculate_daily_bonuses(
            Decimal("1000"), BONUS_DATE
        )).data

        assert summary.recipients == 1
        assert summary.skipped == 1
        assert summary.distributed == Decimal("700")
        assert summary.retained == Decimal("0")
        assert (await engine_service.get_balances(large)).data["bonus"] == Decimal("490")
        assert (await engine_service.get_balances(small)).data["bonus"] == Decimal("210")
        bonuses = await bonuses_by_user(session)
        assert bonuses[large].status == "distributed"

    @pytest.mark.asyncio
    async def test_rounding_remainder_is_retained(self, engine_service, depositor):
        users = [await depositor("100") for _ in range(3)]

        summary = (await engine_service.calculate_daily_bonuses(
            Decimal("100"), BONUS_DATE
        )).data

        assert summary.pool == Decimal("70")
        assert summary.distributed == Decimal("69.99999999")
        assert summary.retained == Decimal("0.00000001")
        for user_id in users:
            balances = (await engine_service.get_balances(user_id)).data
            assert balances["bonus"] == Decimal("23.33333333")

    @pytest.mark.asyncio
    async def test_users_without_deposits_are_not_eligible(
        self, engine_service, session, make_user, depositor
    ):
        idle = (await make_user()).id
        await depositor("500")

        summary = (await engine_service.calculate_daily_bonuses(
            Decimal("100"), BONUS_DATE
        )).data

        assert summary.recipients == 1
        assert idle not in await bonuses_by_user(session)

    @pytest.mark.asyncio
    async def test_simulation_writes_nothing(
        self, engine_service, session, depositor
    ):
        user_id = await depositor("300")
        await depositor("700")

        result = await engine_service.simulate_daily_bonuses(Decimal("1000"), BONUS_DATE)

        summary = result.data
        assert summary.simulated
        assert summary.batch_id is None
        assert summary.distributed == Decimal("700")
        assert summary.recipients == 2
        count = (await session.execute(select(func.count(Bonus.id)))).scalar_one()
        assert count == 0
        balances = (await engine_service.get_balances(user_id)).data
        assert balances["bonus"] == Decimal("0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("profit", [Decimal("-1"), Decimal("NaN")])
    async def test_invalid_profit(self, engine_service, profit):
        result = await engine_service.calculate_daily_bonuses(profit, BONUS_DATE)

        assert not result.success
        assert result.error_code == "invalid_amount"

    @pytest.mark.asyncio
    async def test_zero_profit_creates_no_bonuses(
        self, engine_service, session, depositor
    ):
        await depositor("300")

        summary = (await engine_service.calculate_daily_bonuses(
            Decimal("0"), BONUS_DATE
        )).data

        assert summary.distributed == Decimal("0")
        assert summary.skipped == 1
        count = (await session.execute(select(func.count(Bonus.id)))).scalar_one()
        assert count == 0


class TestFailedBonuses:
    """Per-recipient failures and the retry sweep."""

    @pytest.mark.asyncio
    async def test_frozen_ledger_fails_one_recipient_only(
        self, engine_service, session, depositor, recorder
    ):
        healthy = await depositor("300")
        frozen = await depositor("700")
        await session.execute(
            update(User).where(User.id == frozen).values(ledger_frozen=True)
        )
        await session.commit()

        summary = (await engine_service.calculate_daily_bonuses(
            Decimal("1000"), BONUS_DATE
        )).data

        assert summary.recipients == 1
        assert summary.distributed == Decimal("210")
        assert summary.retained == Decimal("490")
        assert [f.user_id for f in summary.failed] == [frozen]
        bonuses = await bonuses_by_user(session)
        assert bonuses[healthy].status == "distributed"
        assert bonuses[frozen].status == "failed"
        assert bonuses[frozen].failure_reason
        assert "bonus.failed" in recorder.names()

        # Still frozen: the sweep counts another failed attempt
        retry = (await engine_service.retry_failed_bonuses()).data
        assert retry.still_failed == [bonuses[frozen].id]
        bonuses = await bonuses_by_user(session)
        assert bonuses[frozen].retry_count == 1

        await session.execute(
            update(User).where(User.id == frozen).values(ledger_frozen=False)
        )
        await session.commit()

        retry = (await engine_service.retry_failed_bonuses()).data

        assert retry.retried == 1
        assert retry.distributed == Decimal("490")
        assert retry.still_failed == []
        bonuses = await bonuses_by_user(session)
        assert bonuses[frozen].status == "distributed"
        balances = (await engine_service.get_balances(frozen)).data
        assert balances["bonus"] == Decimal("490")
        assert (await engine_service.verify_user_balances(frozen)).success
