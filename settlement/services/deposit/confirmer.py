"""
Deposit confirmer.

Advances a deposit through pending -> confirming -> confirmed, credits the
deposit bucket exactly once and runs the first-deposit follow-up (unlock
date and referral bonuses) as a separate, retryable unit of work.
"""

from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.deposit import Deposit
from settlement.models.enums import BalanceBucket, DepositStatus, TransactionType
from settlement.models.transitions import ensure_transition, is_terminal
from settlement.repositories.deposit_repository import DepositRepository
from settlement.repositories.transaction_repository import TransactionRepository
from settlement.repositories.user_repository import UserRepository
from settlement.services.base_service import BaseService
from settlement.services.bonus.referral_processor import ReferralBonusProcessor
from settlement.services.events import EventDispatcher, EventName
from settlement.services.ledger.ledger_service import LedgerService
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import NotFound, SettlementError


class DepositConfirmer(BaseService):
    """Handles confirmation counting, crediting and post-processing."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.deposit_repo = DepositRepository(session)
        self.transaction_repo = TransactionRepository(session)
        self.user_repo = UserRepository(session)
        self.ledger = LedgerService(session, self.settings, self.events)
        self.referrals = ReferralBonusProcessor(session, self.settings, self.events)

    async def update_confirmations(
        self, deposit_id: int, confirmations: int
    ) -> Deposit:
        """
        Record a confirmation count for a deposit.

        The count never decreases. The first confirmation moves a pending
        deposit to confirming; reaching the required count moves it to
        confirmed and credits the deposit bucket. Terminal deposits are
        returned unchanged, so replaying an observation is harmless.

        Args:
            deposit_id: Deposit ID
            confirmations: Confirmation count reported by the chain

        Returns:
            Updated deposit

        Raises:
            NotFound: If the deposit does not exist
        """
        try:
            deposit = await self.deposit_repo.get_for_update(deposit_id)
            if deposit is None:
                raise NotFound(f"Deposit {deposit_id} not found", deposit_id=deposit_id)

            if is_terminal("deposit", deposit.status):
                await self.commit()
                return deposit

            if confirmations > deposit.confirmations:
                deposit.confirmations = confirmations

            if deposit.status == DepositStatus.PENDING and deposit.confirmations >= 1:
                ensure_transition("deposit", deposit.status, DepositStatus.CONFIRMING)
                deposit.status = DepositStatus.CONFIRMING

            credited = False
            if (
                deposit.status == DepositStatus.CONFIRMING
                and deposit.has_enough_confirmations
            ):
                credited = await self._confirm(deposit)

            await self.commit()

        except Exception:
            await self.rollback()
            raise

        if credited:
            await self.post_confirmation(deposit_id)
            deposit = await self.deposit_repo.reload(deposit_id)

        return deposit

    async def _confirm(self, deposit: Deposit) -> bool:
        """
        Move a confirming deposit to confirmed and credit it.

        Returns:
            True if this call performed the credit
        """
        ensure_transition("deposit", deposit.status, DepositStatus.CONFIRMED)
        now = utc_now()
        won = await self.deposit_repo.compare_and_set_status(
            deposit.id,
            [DepositStatus.CONFIRMING],
            DepositStatus.CONFIRMED,
            confirmed_at=now,
        )
        if not won:
            return False

        if await self.transaction_repo.get_by_deposit(deposit.id) is not None:
            self.logger.warning(
                f"Deposit {deposit.id} already credited, skipping",
                extra={"deposit_id": deposit.id},
            )
            return False

        tx = await self.ledger.credit(
            deposit.user_id,
            BalanceBucket.DEPOSIT,
            deposit.amount,
            TransactionType.DEPOSIT,
            deposit_id=deposit.id,
            description=f"Deposit {deposit.tx_hash}",
        )

        confirmed_count = await self.deposit_repo.count_confirmed(deposit.user_id)
        deposit.is_first_deposit = confirmed_count == 1
        await self.session.flush()

        self.logger.info(
            f"Deposit {deposit.id} confirmed and credited",
            extra={
                "deposit_id": deposit.id,
                "user_id": deposit.user_id,
                "amount": str(deposit.amount),
                "transaction_id": tx.id,
                "is_first_deposit": deposit.is_first_deposit,
            },
        )
        self.emit(
            EventName.DEPOSIT_CONFIRMED,
            deposit_id=deposit.id,
            user_id=deposit.user_id,
            amount=str(deposit.amount),
            transaction_id=tx.id,
            is_first_deposit=deposit.is_first_deposit,
        )
        return True

    async def post_confirmation(self, deposit_id: int) -> bool:
        """
        Run the first-deposit follow-up of a confirmed deposit.

        Sets the user's first deposit and unlock dates, then pays referral
        bonuses. Each flag is set only once its step succeeded; on failure
        the unit is rolled back and the deposit is left for the retry
        sweep.

        Returns:
            True if the deposit needs no further processing
        """
        deposit = await self.deposit_repo.reload(deposit_id)
        if deposit is None or not deposit.needs_post_processing:
            return True

        try:
            if not deposit.bonus_processed:
                user = await self.user_repo.get_by_id(deposit.user_id)
                if user is not None and user.first_deposit_at is None:
                    started = deposit.confirmed_at or utc_now()
                    user.first_deposit_at = started
                    user.deposit_unlock_at = started + timedelta(
                        days=self.settings.deposit_lock_days
                    )
                deposit.bonus_processed = True

            if not deposit.referral_processed:
                if deposit.is_first_deposit:
                    await self.referrals.process_deposit(deposit)
                deposit.referral_processed = True

            await self.session.flush()
            await self.commit()
            return True

        except (SQLAlchemyError, SettlementError) as e:
            await self.rollback()
            self.logger.error(
                f"Post-processing of deposit {deposit_id} failed: {e}",
                extra={"deposit_id": deposit_id},
            )
            return False

    async def retry_post_confirmation(self, limit: int = 100) -> int:
        """
        Re-run follow-up for confirmed deposits whose flags are unset.

        Returns:
            Number of deposits completed by this sweep
        """
        pending = await self.deposit_repo.find_needing_post_processing(limit)
        ids = [d.id for d in pending]
        await self.commit()

        completed = 0
        for deposit_id in ids:
            if await self.post_confirmation(deposit_id):
                completed += 1
        return completed
