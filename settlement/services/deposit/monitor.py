"""
Deposit monitor.

Glue between the chain watcher and the deposit lifecycle: polls watched
addresses, refreshes confirmation counts and expires stale deposits.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.business_constants import REASON_EXPIRED
from settlement.config.settings import Settings
from settlement.models.deposit import Deposit
from settlement.models.enums import DepositStatus
from settlement.models.transitions import ensure_transition
from settlement.models.user import User
from settlement.repositories.deposit_repository import DepositRepository
from settlement.repositories.user_repository import UserRepository
from settlement.services.base_service import BaseService, transaction
from settlement.services.blockchain.interfaces import ChainObservation, ChainWatcher
from settlement.services.deposit.confirmer import DepositConfirmer
from settlement.services.deposit.creator import DepositCreator
from settlement.services.events import EventDispatcher, EventName
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import SettlementError
from settlement.utils.validation import validate_transaction_hash


class DepositMonitor(BaseService):
    """Feeds chain observations into the deposit lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.deposit_repo = DepositRepository(session)
        self.user_repo = UserRepository(session)
        self.creator = DepositCreator(session, self.settings, self.events)
        self.confirmer = DepositConfirmer(session, self.settings, self.events)

    async def record_observation(
        self, user_id: int, observation: ChainObservation
    ) -> Deposit | None:
        """
        Create or update the deposit behind one chain observation.

        Returns:
            The deposit, or None if the observation was malformed
        """
        if not validate_transaction_hash(observation.tx_hash):
            self.logger.warning(
                f"Ignoring observation with malformed hash {observation.tx_hash!r}",
                extra={"user_id": user_id},
            )
            return None

        return await self.creator.create_deposit(
            user_id=user_id,
            tx_hash=observation.tx_hash,
            amount=observation.amount,
            confirmations=observation.confirmations,
            from_address=observation.from_address,
            to_address=observation.to_address,
            block_number=observation.block_number,
        )

    async def observe_address(
        self, watcher: ChainWatcher, user: User
    ) -> list[Deposit]:
        """
        Poll the watcher for a user's deposit address.

        Observations that fail validation are logged and skipped so one bad
        transfer does not block the rest.

        Returns:
            Deposits created or updated by this poll
        """
        user_id, address = user.id, user.deposit_address
        if not address:
            return []

        observations = await watcher.observe(address)
        deposits: list[Deposit] = []
        for observation in observations:
            try:
                deposit = await self.record_observation(user_id, observation)
            except SettlementError as e:
                self.logger.warning(
                    f"Observation {observation.tx_hash} skipped: {e}",
                    extra={"user_id": user_id, "code": e.code},
                )
                continue
            if deposit is not None:
                deposits.append(deposit)
        return deposits

    async def scan_deposit_addresses(self, watcher: ChainWatcher) -> int:
        """
        Poll every watched deposit address.

        Returns:
            Number of deposits created or updated
        """
        users = await self.user_repo.find_with_deposit_address()
        await self.commit()

        touched = 0
        for user in users:
            try:
                touched += len(await self.observe_address(watcher, user))
            except SettlementError as e:
                self.logger.error(
                    f"Scanning address of user {user.id} failed: {e}",
                    extra={"user_id": user.id, "code": e.code},
                )
        return touched

    async def refresh_pending(self, watcher: ChainWatcher) -> int:
        """
        Re-read confirmations of pending and confirming deposits.

        Returns:
            Number of deposits confirmed by this pass
        """
        unconfirmed = await self.deposit_repo.find_unconfirmed()
        targets = [(d.id, d.tx_hash) for d in unconfirmed]
        await self.commit()

        confirmed = 0
        for deposit_id, tx_hash in targets:
            try:
                count = await watcher.get_confirmations(tx_hash)
                if count is None:
                    continue
                deposit = await self.confirmer.update_confirmations(deposit_id, count)
            except SettlementError as e:
                self.logger.warning(
                    f"Refreshing deposit {deposit_id} failed: {e}",
                    extra={"deposit_id": deposit_id, "code": e.code},
                )
                continue
            if deposit.status == DepositStatus.CONFIRMED:
                confirmed += 1
        return confirmed

    @transaction
    async def expire_stale(self) -> int:
        """
        Expire pending deposits past their expiry time.

        Deposits that reached confirming are never expired.

        Returns:
            Number of deposits expired
        """
        stale = await self.deposit_repo.find_stale_pending(utc_now())
        targets = [(d.id, d.user_id, d.amount, d.status) for d in stale]

        expired = 0
        for deposit_id, user_id, amount, status in targets:
            ensure_transition("deposit", status, DepositStatus.EXPIRED)
            if await self.deposit_repo.compare_and_set_status(
                deposit_id,
                [DepositStatus.PENDING],
                DepositStatus.EXPIRED,
                failure_reason=REASON_EXPIRED,
            ):
                expired += 1
                self.emit(
                    EventName.DEPOSIT_EXPIRED,
                    deposit_id=deposit_id,
                    user_id=user_id,
                    amount=str(amount),
                )

        if expired:
            self.logger.info(
                f"Expired {expired} stale deposits", extra={"expired": expired}
            )
        return expired
