"""
Deposit service facade.

Single entry point for the deposit confirmation tracker. Delegates to:
- DepositCreator: sightings and fraud screening
- DepositConfirmer: confirmation counting, crediting, follow-up
- DepositMonitor: watcher polling and expiry sweeps
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.deposit import Deposit
from settlement.models.user import User
from settlement.repositories.deposit_repository import DepositRepository
from settlement.services.base_service import BaseService
from settlement.services.blockchain.interfaces import ChainObservation, ChainWatcher
from settlement.services.deposit.confirmer import DepositConfirmer
from settlement.services.deposit.creator import DepositCreator
from settlement.services.deposit.monitor import DepositMonitor
from settlement.services.events import EventDispatcher


class DepositService(BaseService):
    """Deposit confirmation tracker facade."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        """Initialize deposit service facade."""
        super().__init__(session, settings, events)
        self.deposit_repo = DepositRepository(session)

        self.creator = DepositCreator(session, self.settings, self.events)
        self.confirmer = DepositConfirmer(session, self.settings, self.events)
        self.monitor = DepositMonitor(session, self.settings, self.events)

    async def create_deposit(
        self,
        user_id: int,
        tx_hash: str,
        amount: Decimal,
        confirmations: int = 0,
        from_address: str | None = None,
        to_address: str | None = None,
        block_number: int | None = None,
    ) -> Deposit:
        """Delegates to DepositCreator.create_deposit()."""
        return await self.creator.create_deposit(
            user_id=user_id,
            tx_hash=tx_hash,
            amount=amount,
            confirmations=confirmations,
            from_address=from_address,
            to_address=to_address,
            block_number=block_number,
        )

    async def confirm_deposit(self, deposit_id: int, confirmations: int) -> Deposit:
        """Delegates to DepositConfirmer.update_confirmations()."""
        return await self.confirmer.update_confirmations(deposit_id, confirmations)

    async def record_observation(
        self, user_id: int, observation: ChainObservation
    ) -> Deposit | None:
        return await self.monitor.record_observation(user_id, observation)

    async def observe_address(
        self, watcher: ChainWatcher, user: User
    ) -> list[Deposit]:
        return await self.monitor.observe_address(watcher, user)

    async def scan_deposit_addresses(self, watcher: ChainWatcher) -> int:
        return await self.monitor.scan_deposit_addresses(watcher)

    async def refresh_pending(self, watcher: ChainWatcher) -> int:
        return await self.monitor.refresh_pending(watcher)

    async def expire_stale(self) -> int:
        return await self.monitor.expire_stale()

    async def retry_post_confirmation(self, limit: int = 100) -> int:
        return await self.confirmer.retry_post_confirmation(limit)

    async def get_by_tx_hash(self, tx_hash: str) -> Deposit | None:
        return await self.deposit_repo.get_by_tx_hash(tx_hash)
