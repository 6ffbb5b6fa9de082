"""
Daily bonus distributor.

Splits a share of the day's profit across eligible depositors. Each
recipient is its own unit of work (bonus row commit, then credit commit),
so a long run never holds one lock for everybody and can be resumed: a
second run for the same date works from the pool stored on the first
run's rows, skips distributed rows, finishes calculated ones and leaves
failed ones to the retry sweep. The rows of one date never add up to more
than that pool.
"""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.bonus import daily_dedupe_key
from settlement.models.enums import BonusStatus, BonusType
from settlement.repositories.bonus_repository import BonusRepository
from settlement.repositories.user_repository import UserRepository
from settlement.services.base_service import BaseService
from settlement.services.bonus.bonus_payer import BonusPayer
from settlement.services.bonus.calculator import BonusCalculator, PlannedShare
from settlement.services.events import EventDispatcher
from settlement.utils.datetime_utils import utc_today
from settlement.utils.exceptions import InvalidAmount, SettlementError


@dataclass
class FailedRecipient:
    user_id: int
    bonus_id: int | None
    amount: Decimal
    reason: str


@dataclass
class DailyRunSummary:
    """Result of one daily distribution run."""

    batch_id: int | None
    bonus_date: date
    total_profit: Decimal
    pool: Decimal
    total_eligible_balance: Decimal
    distributed: Decimal = Decimal("0")
    recipients: int = 0
    skipped: int = 0
    failed: list[FailedRecipient] = field(default_factory=list)
    simulated: bool = False

    @property
    def retained(self) -> Decimal:
        """Pool share left undistributed (rounding remainder and failures)."""
        return self.pool - self.distributed

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["retained"] = self.retained
        return {
            k: str(v) if isinstance(v, Decimal | date) else v
            for k, v in data.items()
        }


class DailyBonusDistributor(BaseService):
    """Daily profit-share distribution."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.user_repo = UserRepository(session)
        self.bonus_repo = BonusRepository(session)
        self.payer = BonusPayer(session, self.settings, self.events)
        self.calculator = BonusCalculator(self.settings.money_scale)

    async def plan(
        self, profit: Decimal, bonus_date: date | None = None
    ) -> tuple[DailyRunSummary, list[PlannedShare]]:
        """
        Compute the distribution without writing anything.

        Returns:
            Tuple of (summary marked simulated, planned shares)
        """
        profit = self._validate_profit(profit)
        bonus_date = bonus_date or utc_today()

        eligible = await self.user_repo.find_bonus_eligible()
        balances = [(user.id, balance) for user, balance in eligible]
        pool = self.calculator.calculate_pool(
            profit, self.settings.distribution_percentage
        )
        shares = self.calculator.plan_distribution(pool, balances)

        summary = DailyRunSummary(
            batch_id=None,
            bonus_date=bonus_date,
            total_profit=profit,
            pool=pool,
            total_eligible_balance=sum(
                (s.deposit_balance for s in shares), Decimal("0")
            ),
            simulated=True,
        )
        for share in shares:
            if share.amount > 0:
                summary.distributed += share.amount
                summary.recipients += 1
            else:
                summary.skipped += 1
        return summary, shares

    async def run(
        self, profit: Decimal, bonus_date: date | None = None
    ) -> DailyRunSummary:
        """
        Distribute the day's pool.

        A second run for a date that already has a batch reuses the stored
        pool and total deposits, and never allocates more than what is left
        of that pool. A different profit for the same date is refused.

        Args:
            profit: Total daily profit
            bonus_date: Day being distributed (today if omitted)

        Returns:
            DailyRunSummary with failed recipients listed individually

        Raises:
            InvalidAmount: Invalid profit, or profit differs from the
                earlier run for the same date
        """
        summary, shares = await self.plan(profit, bonus_date)
        summary.simulated = False
        summary.distributed = Decimal("0")
        summary.recipients = 0
        summary.skipped = 0

        existing = await self.bonus_repo.find_daily_for_date(summary.bonus_date)
        if existing:
            snapshot = existing[0]
            if snapshot.total_profit != summary.total_profit:
                raise InvalidAmount(
                    f"Bonuses for {summary.bonus_date} were distributed "
                    f"from a profit of {snapshot.total_profit}",
                    stored=snapshot.total_profit,
                    requested=summary.total_profit,
                )
            summary.batch_id = snapshot.batch_id
            summary.pool = snapshot.distribution_pool
            summary.total_eligible_balance = snapshot.total_deposits
            shares = [
                PlannedShare(
                    share.user_id,
                    share.deposit_balance,
                    self.calculator.calculate_share(
                        summary.pool,
                        share.deposit_balance,
                        summary.total_eligible_balance,
                    ),
                )
                for share in shares
            ]
        else:
            summary.batch_id = await self.bonus_repo.next_batch_id()

        planned = {share.user_id for share in shares}
        # Rows of recipients who are no longer eligible still get finished
        shares += [
            PlannedShare(bonus.user_id, bonus.deposit_balance, bonus.amount)
            for bonus in existing
            if bonus.user_id not in planned
        ]
        # Every written row claims its amount, whatever its status
        unallocated = summary.pool - sum(
            (bonus.amount for bonus in existing), Decimal("0")
        )
        batch_id = summary.batch_id

        self.logger.info(
            f"Daily bonus run {batch_id} for {summary.bonus_date}",
            extra={
                "batch_id": batch_id,
                "profit": str(summary.total_profit),
                "pool": str(summary.pool),
                "eligible_users": len(shares),
                "resumed": bool(existing),
            },
        )
        # Release the read snapshot before per-recipient units begin
        await self.commit()

        for share in shares:
            unallocated -= await self._process_share(share, summary, unallocated)

        self.logger.info(
            f"Daily bonus run {batch_id} finished",
            extra={
                "batch_id": batch_id,
                "distributed": str(summary.distributed),
                "retained": str(summary.retained),
                "recipients": summary.recipients,
                "skipped": summary.skipped,
                "failed": len(summary.failed),
            },
        )
        return summary

    async def _process_share(
        self, share: PlannedShare, summary: DailyRunSummary, unallocated: Decimal
    ) -> Decimal:
        """Handle one recipient; returns the amount newly taken from the pool."""
        key = daily_dedupe_key(share.user_id, summary.bonus_date)
        bonus = await self.bonus_repo.get_by_dedupe_key(key)
        allocated = Decimal("0")

        if bonus is not None:
            if bonus.status == BonusStatus.DISTRIBUTED:
                # Counted against the pool by the earlier run
                summary.distributed += bonus.amount
                summary.skipped += 1
                return allocated
            if bonus.status != BonusStatus.CALCULATED:
                summary.skipped += 1
                return allocated
        else:
            amount = min(share.amount, unallocated)
            if amount <= 0:
                summary.skipped += 1
                return allocated
            if amount < share.amount:
                self.logger.warning(
                    f"Daily bonus for user {share.user_id} capped at the unallocated pool",
                    extra={
                        "user_id": share.user_id,
                        "planned": str(share.amount),
                        "capped": str(amount),
                    },
                )
            bonus = await self.bonus_repo.create_if_absent(
                dedupe_key=key,
                user_id=share.user_id,
                type=BonusType.DAILY,
                status=BonusStatus.CALCULATED,
                amount=amount,
                bonus_date=summary.bonus_date,
                batch_id=summary.batch_id,
                deposit_balance=share.deposit_balance,
                total_deposits=summary.total_eligible_balance,
                total_profit=summary.total_profit,
                distribution_pool=summary.pool,
                percentage=self.settings.distribution_percentage,
            )
            if bonus is None:
                # Created by a concurrent run
                summary.skipped += 1
                return allocated
            await self.commit()
            allocated = amount

        bonus_id = bonus.id
        amount = bonus.amount
        try:
            await self.payer.pay(bonus)
            await self.commit()
        except (SQLAlchemyError, SettlementError) as e:
            await self.rollback()
            self.logger.error(
                f"Daily bonus {bonus_id} for user {share.user_id} failed: {e}",
                extra={"bonus_id": bonus_id, "user_id": share.user_id},
            )
            await self.payer.mark_failed(bonus_id, str(e))
            await self.commit()
            summary.failed.append(
                FailedRecipient(share.user_id, bonus_id, amount, str(e))
            )
            return allocated

        summary.distributed += amount
        summary.recipients += 1
        return allocated

    @staticmethod
    def _validate_profit(profit: Decimal) -> Decimal:
        if isinstance(profit, float):
            raise InvalidAmount("Float amounts are not accepted")
        if not isinstance(profit, Decimal):
            profit = Decimal(str(profit))
        if not profit.is_finite() or profit < 0:
            raise InvalidAmount("Profit must be a non-negative amount", profit=str(profit))
        return profit
