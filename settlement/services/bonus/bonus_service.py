"""
Bonus service.

Entry point of the bonus engine: daily distribution, simulation, referral
processing and the retry sweep for failed bonuses.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.repositories.bonus_repository import BonusRepository
from settlement.services.base_service import BaseService, log_operation
from settlement.services.bonus.bonus_payer import BonusPayer
from settlement.services.bonus.daily_distributor import (
    DailyBonusDistributor,
    DailyRunSummary,
)
from settlement.services.bonus.referral_processor import ReferralBonusProcessor
from settlement.services.events import EventDispatcher
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import SettlementError


@dataclass
class RetrySummary:
    retried: int = 0
    distributed: Decimal = Decimal("0")
    still_failed: list[int] = field(default_factory=list)


class BonusService(BaseService):
    """Bonus engine facade."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.bonus_repo = BonusRepository(session)
        self.payer = BonusPayer(session, self.settings, self.events)
        self.distributor = DailyBonusDistributor(session, self.settings, self.events)
        self.referrals = ReferralBonusProcessor(session, self.settings, self.events)

    @log_operation
    async def calculate_daily_bonuses(
        self, profit: Decimal, bonus_date: date | None = None
    ) -> DailyRunSummary:
        """Run (or resume) the daily distribution for ``bonus_date``."""
        return await self.distributor.run(profit, bonus_date)

    async def simulate_daily_bonuses(
        self, profit: Decimal, bonus_date: date | None = None
    ) -> DailyRunSummary:
        """Dry run: what ``calculate_daily_bonuses`` would pay today."""
        summary, _ = await self.distributor.plan(profit, bonus_date)
        return summary

    @log_operation
    async def retry_failed_bonuses(self, days: int = 7) -> RetrySummary:
        """
        Retry failed bonuses created in the last ``days`` days.

        Each bonus is its own unit of work; a bonus that fails again keeps
        its failed status with the new reason and a higher retry count.
        """
        summary = RetrySummary()
        failed = await self.bonus_repo.find_failed_since(
            utc_now() - timedelta(days=days)
        )
        targets = [(b.id, b.amount) for b in failed]
        await self.commit()

        for bonus_id, amount in targets:
            summary.retried += 1
            try:
                bonus = await self.bonus_repo.reload(bonus_id)
                await self.payer.pay(bonus)
                await self.commit()
            except (SQLAlchemyError, SettlementError) as e:
                await self.rollback()
                self.logger.warning(
                    f"Retry of bonus {bonus_id} failed: {e}",
                    extra={"bonus_id": bonus_id},
                )
                await self.payer.mark_failed(bonus_id, str(e), retry=True)
                await self.commit()
                summary.still_failed.append(bonus_id)
                continue
            summary.distributed += amount

        return summary
