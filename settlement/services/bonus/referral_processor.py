"""
Referral bonus processor.

Pays referrers a percentage of a user's first confirmed deposit: level 1
is the direct referrer, level 2 the referrer's referrer. One Bonus per
(source deposit, level), so re-running never pays twice.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.bonus import Bonus, referral_dedupe_key
from settlement.models.deposit import Deposit
from settlement.models.enums import BonusStatus, BonusType
from settlement.repositories.bonus_repository import BonusRepository
from settlement.repositories.user_repository import UserRepository
from settlement.services.base_service import BaseService
from settlement.services.bonus.bonus_payer import BonusPayer
from settlement.services.bonus.calculator import BonusCalculator
from settlement.services.events import EventDispatcher
from settlement.utils.datetime_utils import utc_today


class ReferralBonusProcessor(BaseService):
    """Computes and credits multi-level referral bonuses."""

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

    async def process_deposit(self, deposit: Deposit) -> list[Bonus]:
        """
        Pay referral bonuses for a first deposit.

        Runs in the caller's unit of work; any failure propagates so the
        caller can roll back and leave the deposit for the retry sweep.
        Levels already distributed are skipped.

        Args:
            deposit: The user's first confirmed deposit

        Returns:
            Bonuses distributed by this call
        """
        chain = await self.user_repo.get_referral_chain(
            deposit.user_id, self.settings.referral_max_levels
        )
        if not chain:
            self.logger.debug(
                f"No referrers for user {deposit.user_id}",
                extra={"deposit_id": deposit.id},
            )
            return []

        paid: list[Bonus] = []
        for level, referrer in chain:
            if not referrer.is_active:
                continue

            percent = self.settings.referral_percent(level)
            amount = self.calculator.calculate_referral_amount(
                deposit.amount, percent
            )
            if amount <= 0:
                continue

            key = referral_dedupe_key(deposit.id, level)
            bonus = await self.bonus_repo.create_if_absent(
                dedupe_key=key,
                user_id=referrer.id,
                type=BonusType.REFERRAL,
                status=BonusStatus.CALCULATED,
                amount=amount,
                bonus_date=utc_today(),
                percentage=percent,
                referral_from_id=deposit.user_id,
                referral_level=level,
                source_deposit_id=deposit.id,
            )
            if bonus is None:
                bonus = await self.bonus_repo.get_by_dedupe_key(key)
                if bonus is None or bonus.status not in (
                    BonusStatus.CALCULATED, BonusStatus.FAILED
                ):
                    continue

            await self.payer.pay(bonus)
            paid.append(bonus)

            self.logger.info(
                f"Referral bonus level {level} paid to user {referrer.id}",
                extra={
                    "bonus_id": bonus.id,
                    "referrer_id": referrer.id,
                    "referral_from_id": deposit.user_id,
                    "deposit_id": deposit.id,
                    "amount": str(amount),
                },
            )

        return paid
