"""
Bonus payer.

Turns a calculated (or failed) Bonus into a ledger credit and flips it to
distributed. Shared by the daily distribution, referral processing and the
retry sweep. Never commits.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.bonus import Bonus
from settlement.models.enums import (
    BalanceBucket,
    BonusStatus,
    BonusType,
    TransactionType,
)
from settlement.models.transaction import Transaction
from settlement.models.transitions import can_transition, ensure_transition
from settlement.repositories.bonus_repository import BonusRepository
from settlement.services.base_service import BaseService
from settlement.services.events import EventDispatcher, EventName
from settlement.services.ledger.ledger_service import LedgerService
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import InvalidTransition


class BonusPayer(BaseService):
    """Credit bonuses to the ledger."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.bonus_repo = BonusRepository(session)
        self.ledger = LedgerService(session, self.settings, self.events)

    async def pay(self, bonus: Bonus) -> Transaction:
        """
        Credit a bonus and mark it distributed.

        Daily bonuses go to the bonus bucket, referral bonuses to the
        referral bucket.

        Args:
            bonus: Bonus in calculated or failed status

        Returns:
            The credit Transaction

        Raises:
            InvalidTransition: If the bonus cannot be distributed (or was
                distributed concurrently)
        """
        ensure_transition("bonus", bonus.status, BonusStatus.DISTRIBUTED)
        previous_status = bonus.status

        if bonus.type == BonusType.REFERRAL:
            bucket = BalanceBucket.REFERRAL
            tx_type = TransactionType.REFERRAL_BONUS
            description = f"Referral bonus level {bonus.referral_level}"
        else:
            bucket = BalanceBucket.BONUS
            tx_type = TransactionType.BONUS
            description = f"Daily bonus {bonus.bonus_date.isoformat()}"

        tx = await self.ledger.credit(
            bonus.user_id,
            bucket,
            bonus.amount,
            tx_type,
            bonus_id=bonus.id,
            description=description,
            extra_data={
                "bonus_id": bonus.id,
                "batch_id": bonus.batch_id,
                "referral_from_id": bonus.referral_from_id,
            },
        )

        won = await self.bonus_repo.compare_and_set_status(
            bonus.id,
            [previous_status],
            BonusStatus.DISTRIBUTED,
            transaction_id=tx.id,
            distributed_at=utc_now(),
            failure_reason=None,
        )
        if not won:
            raise InvalidTransition(
                f"Bonus {bonus.id} changed status concurrently"
            )

        if bonus.type == BonusType.REFERRAL:
            self.emit(
                EventName.REFERRAL_BONUS_CREDITED,
                user_id=bonus.user_id,
                bonus_id=bonus.id,
                amount=str(bonus.amount),
                level=bonus.referral_level,
                referral_from_id=bonus.referral_from_id,
            )
        else:
            self.emit(
                EventName.BONUS_DISTRIBUTED,
                user_id=bonus.user_id,
                bonus_id=bonus.id,
                amount=str(bonus.amount),
                bonus_date=bonus.bonus_date.isoformat(),
            )
        return tx

    async def mark_failed(
        self, bonus_id: int, reason: str, retry: bool = False
    ) -> bool:
        """
        Record a failed distribution attempt.

        Args:
            bonus_id: Bonus ID
            reason: Failure description
            retry: True when called from the retry sweep

        Returns:
            True if the bonus is now failed
        """
        bonus = await self.bonus_repo.reload(bonus_id)
        if bonus is None:
            return False

        values = {"failure_reason": reason[:1000]}
        if retry:
            values["retry_count"] = bonus.retry_count + 1

        if bonus.status == BonusStatus.FAILED:
            await self.bonus_repo.update(bonus_id, **values)
            changed = True
        elif not can_transition("bonus", bonus.status, BonusStatus.FAILED):
            changed = False
        else:
            changed = await self.bonus_repo.compare_and_set_status(
                bonus_id,
                [BonusStatus.PENDING, BonusStatus.CALCULATED],
                BonusStatus.FAILED,
                **values,
            )

        if changed:
            self.emit(
                EventName.BONUS_FAILED,
                user_id=bonus.user_id,
                bonus_id=bonus_id,
                amount=str(bonus.amount),
                reason=reason,
            )
        return changed
