"""
Deposit creator.

Records a newly observed chain inflow as a pending deposit and runs the
fraud gate before anything else touches it.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.business_constants import REASON_BELOW_MINIMUM
from settlement.config.settings import Settings
from settlement.models.deposit import Deposit
from settlement.models.enums import DepositStatus
from settlement.models.transitions import ensure_transition
from settlement.repositories.deposit_repository import DepositRepository
from settlement.repositories.user_repository import UserRepository
from settlement.services.base_service import BaseService
from settlement.services.deposit.confirmer import DepositConfirmer
from settlement.services.events import EventDispatcher, EventName
from settlement.services.fraud.fraud_gate import FraudGate
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import DuplicateTransaction, NotFound
from settlement.utils.validation import to_amount


class DepositCreator(BaseService):
    """Creates deposits from chain sightings."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.deposit_repo = DepositRepository(session)
        self.user_repo = UserRepository(session)
        self.fraud_gate = FraudGate(session, self.settings, self.events)
        self.confirmer = DepositConfirmer(session, self.settings, self.events)

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
        """
        Create a deposit for a chain transaction, or update the existing one.

        A hash seen before only updates the confirmation count. A new
        deposit below the minimum amount or vetoed by the fraud gate is
        stored as failed with the reason and never credited.

        Args:
            user_id: Owner of the receiving address
            tx_hash: Chain transaction hash
            amount: Transferred amount
            confirmations: Confirmations at sighting time
            from_address: Sender address
            to_address: Receiving address
            block_number: Block of the transfer

        Returns:
            The deposit (new or existing)

        Raises:
            InvalidAmount: If the amount is not a valid ledger amount
            DuplicateTransaction: If the hash belongs to another user's deposit
            NotFound: If the user does not exist
        """
        amount = to_amount(amount, self.settings.money_scale)

        existing = await self.deposit_repo.get_by_tx_hash(tx_hash)
        if existing is not None:
            return await self._update_existing(existing, user_id, confirmations)

        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)

        try:
            deposit = await self.deposit_repo.create(
                user_id=user_id,
                tx_hash=tx_hash,
                amount=amount,
                from_address=from_address,
                to_address=to_address,
                block_number=block_number,
                network=self.settings.deposit_network,
                currency=self.settings.deposit_currency,
                required_confirmations=self.settings.required_confirmations,
                status=DepositStatus.PENDING,
                expires_at=utc_now()
                + timedelta(hours=self.settings.deposit_expiry_hours),
            )
        except IntegrityError:
            # Same hash inserted concurrently
            await self.rollback()
            existing = await self.deposit_repo.get_by_tx_hash(tx_hash)
            if existing is None:
                raise
            return await self._update_existing(existing, user_id, confirmations)

        if amount < self.settings.minimum_deposit_amount:
            return await self._reject(
                deposit,
                REASON_BELOW_MINIMUM,
                f"Deposit below minimum of {self.settings.minimum_deposit_amount}",
            )

        decision = await self.fraud_gate.check_deposit(deposit, user)
        if not decision.allowed:
            return await self._reject(
                deposit, f"fraud:{decision.rule}", decision.reason or ""
            )

        self.logger.info(
            f"Deposit {deposit.id} created for user {user_id}",
            extra={
                "deposit_id": deposit.id,
                "user_id": user_id,
                "amount": str(amount),
                "tx_hash": tx_hash,
                "signals": decision.signals,
            },
        )
        self.emit(
            EventName.DEPOSIT_CREATED,
            deposit_id=deposit.id,
            user_id=user_id,
            amount=str(amount),
            tx_hash=tx_hash,
        )
        await self.commit()

        if confirmations > 0:
            return await self.confirmer.update_confirmations(deposit.id, confirmations)
        return deposit

    async def _update_existing(
        self, deposit: Deposit, user_id: int, confirmations: int
    ) -> Deposit:
        if deposit.user_id != user_id:
            raise DuplicateTransaction(
                "Transaction hash already attached to another user's deposit",
                tx_hash=deposit.tx_hash,
                deposit_id=deposit.id,
            )
        return await self.confirmer.update_confirmations(deposit.id, confirmations)

    async def _reject(self, deposit: Deposit, reason: str, message: str) -> Deposit:
        ensure_transition("deposit", deposit.status, DepositStatus.FAILED)
        deposit.status = DepositStatus.FAILED
        deposit.failure_reason = reason[:255]
        await self.session.flush()

        self.logger.warning(
            f"Deposit {deposit.id} rejected: {message}",
            extra={
                "deposit_id": deposit.id,
                "user_id": deposit.user_id,
                "amount": str(deposit.amount),
                "reason": reason,
            },
        )
        self.emit(
            EventName.DEPOSIT_REJECTED,
            deposit_id=deposit.id,
            user_id=deposit.user_id,
            amount=str(deposit.amount),
            reason=reason,
        )
        await self.commit()
        return deposit
