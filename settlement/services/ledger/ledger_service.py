"""
Ledger service.

The only code path that changes balances. Every credit or debit is one
atomic conditional UPDATE on the balance row plus exactly one
Transaction row carrying the before/after amounts, written in the
caller's unit of work. Methods here never commit, except for the
freeze of an invariant violation and the audit row of a refused
adjustment or reversal.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.enums import (
    AuditSeverity,
    BalanceBucket,
    TransactionStatus,
    TransactionType,
)
from settlement.models.transaction import Transaction
from settlement.models.transitions import ensure_transition
from settlement.models.user import User
from settlement.repositories.audit_event_repository import AuditEventRepository
from settlement.repositories.balance_repository import BalanceRepository
from settlement.repositories.transaction_repository import TransactionRepository
from settlement.services.base_service import BaseService
from settlement.services.events import EventDispatcher, EventName
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import (
    BalanceInvariantViolation,
    InsufficientFunds,
    InvalidAmount,
    InvalidTransition,
    NotFound,
)
from settlement.utils.validation import to_amount


class LedgerService(BaseService):
    """Atomic balance mutations with an append-only transaction log."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.balance_repo = BalanceRepository(session)
        self.transaction_repo = TransactionRepository(session)
        self.audit_repo = AuditEventRepository(session)

    async def credit(
        self,
        user_id: int,
        bucket: str,
        amount: Decimal,
        tx_type: str,
        **refs: Any,
    ) -> Transaction:
        """
        Add funds to a bucket.

        Args:
            user_id: User ID
            bucket: deposit, bonus or referral
            amount: Positive amount
            tx_type: Transaction type recorded on the ledger row
            **refs: deposit_id, withdrawal_id, bonus_id,
                related_transaction_id, description, extra_data

        Returns:
            The completed Transaction
        """
        amount = self._amount(amount)
        bucket = self._bucket(bucket)
        await self._ensure_not_frozen(user_id)

        balance_after = await self.balance_repo.credit(user_id, bucket, amount)
        return await self._record(
            user_id, bucket, amount, balance_after, tx_type, **refs
        )

    async def debit(
        self,
        user_id: int,
        bucket: str,
        amount: Decimal,
        tx_type: str,
        **refs: Any,
    ) -> Transaction:
        """
        Remove funds from a bucket.

        Args:
            user_id: User ID
            bucket: deposit, bonus or referral
            amount: Positive amount to remove
            tx_type: Transaction type recorded on the ledger row
            **refs: Same as ``credit``

        Returns:
            The completed Transaction (negative amount)

        Raises:
            InsufficientFunds: If the bucket does not cover ``amount``
        """
        amount = self._amount(amount)
        bucket = self._bucket(bucket)
        await self._ensure_not_frozen(user_id)

        balance_after = await self.balance_repo.debit(user_id, bucket, amount)
        if balance_after is None:
            available = await self.balance_repo.get_amount(user_id, bucket)
            self.logger.warning(
                f"Insufficient funds for user {user_id} in {bucket}",
                extra={
                    "user_id": user_id,
                    "bucket": bucket,
                    "requested": str(amount),
                    "available": str(available),
                },
            )
            raise InsufficientFunds(
                f"Insufficient {bucket} balance",
                available=available,
                requested=amount,
                user_id=user_id,
                bucket=bucket,
            )

        return await self._record(
            user_id, bucket, -amount, balance_after, tx_type, **refs
        )

    async def reverse(
        self,
        transaction_id: int,
        reason: str,
        admin_id: int | None = None,
    ) -> Transaction:
        """
        Undo a completed credit.

        Only deposit, bonus, referral_bonus and adjustment credits that
        were not reversed before qualify. The offsetting debit fails with
        InsufficientFunds if the funds were already spent. The refusal is
        audited and committed after the session is rolled back.

        Returns:
            The offsetting reversal Transaction
        """
        original = await self.transaction_repo.get_by_id(transaction_id)
        if original is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        if not original.can_be_reversed:
            raise InvalidTransition(
                f"Transaction {transaction_id} cannot be reversed",
                type=original.type,
                status=original.status,
                is_reversed=original.is_reversed,
            )
        user_id = original.user_id
        try:
            return await self._offset(original, reason, admin_id)
        except InsufficientFunds as e:
            await self._record_refusal(
                "reversal", e, user_id, admin_id, reason, transaction_id
            )
            raise

    async def compensate(
        self, transaction_id: int, reason: str
    ) -> Transaction:
        """
        Return a withdrawal debit to its bucket after a failed payout.

        Returns:
            The offsetting reversal Transaction
        """
        original = await self.transaction_repo.get_by_id(transaction_id)
        if original is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        if original.type != TransactionType.WITHDRAWAL or not original.is_debit:
            raise InvalidTransition(
                f"Transaction {transaction_id} is not a withdrawal debit"
            )
        return await self._offset(original, reason, admin_id=None)

    async def adjust(
        self,
        user_id: int,
        bucket: str,
        amount: Decimal,
        reason: str,
        admin_id: int,
    ) -> Transaction:
        """
        Manual admin correction.

        Args:
            amount: Signed amount, positive credits and negative debits

        Returns:
            The adjustment Transaction
        """
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))
        if amount == 0:
            raise InvalidAmount("Adjustment amount must not be zero")

        refs = {
            "description": reason,
            "extra_data": {"admin_id": admin_id},
        }
        if amount > 0:
            tx = await self.credit(
                user_id, bucket, amount, TransactionType.ADJUSTMENT, **refs
            )
        else:
            try:
                tx = await self.debit(
                    user_id, bucket, -amount, TransactionType.ADJUSTMENT, **refs
                )
            except InsufficientFunds as e:
                await self._record_refusal("adjustment", e, user_id, admin_id, reason)
                raise

        await self.audit_repo.record(
            "ledger.adjustment",
            message=reason,
            user_id=user_id,
            actor_id=admin_id,
            entity_type="transaction",
            entity_id=tx.id,
            severity=AuditSeverity.WARNING,
            details={"bucket": bucket, "amount": str(amount)},
        )
        return tx

    async def get_balances(self, user_id: int) -> dict[str, Decimal]:
        """Current amount of every bucket."""
        return await self.balance_repo.get_amounts(user_id)

    async def get_transaction_history(
        self, user_id: int, **filters: Any
    ) -> list[Transaction]:
        """User's ledger rows, newest first (see TransactionRepository.get_history)."""
        return await self.transaction_repo.get_history(user_id, **filters)

    async def verify_user_balances(self, user_id: int) -> None:
        """
        Check that every stored balance equals the sum of its transactions.

        On mismatch the user's ledger is frozen, a critical audit event is
        written and an operator alert is published. The freeze is committed
        immediately, so call this before any other write in the unit of work.
        Nothing is corrected.

        Raises:
            BalanceInvariantViolation: If any bucket disagrees
        """
        quantum = self.settings.money_quantum
        balances = await self.balance_repo.get_amounts(user_id)
        sums = await self.transaction_repo.sum_by_bucket(user_id)

        mismatches = {}
        for bucket in set(balances) | set(sums):
            stored = balances.get(bucket, Decimal("0")).quantize(quantum)
            derived = sums.get(bucket, Decimal("0")).quantize(quantum)
            if stored != derived:
                mismatches[bucket] = {"stored": str(stored), "derived": str(derived)}

        if not mismatches:
            return

        self.logger.critical(
            f"Balance invariant violated for user {user_id}",
            extra={"user_id": user_id, "mismatches": mismatches},
        )
        user = await self.session.get(User, user_id)
        if user is not None:
            user.ledger_frozen = True
            user.is_flagged = True
            user.flagged_reason = "balance_invariant_violation"
        await self.audit_repo.record(
            EventName.LEDGER_INVARIANT_VIOLATION,
            message="Stored balance differs from transaction sum",
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            severity=AuditSeverity.CRITICAL,
            details=mismatches,
        )
        self.emit(
            EventName.LEDGER_INVARIANT_VIOLATION,
            user_id=user_id,
            mismatches=mismatches,
        )
        # Persist the freeze even though the caller will roll back
        await self.commit()
        raise BalanceInvariantViolation(
            f"Balance invariant violated for user {user_id}",
            user_id=user_id,
            mismatches=mismatches,
        )

    async def _record_refusal(
        self,
        operation: str,
        error: InsufficientFunds,
        user_id: int,
        admin_id: int | None,
        reason: str,
        transaction_id: int | None = None,
    ) -> None:
        # Partial work of the refused operation is dropped, the audit row is kept
        await self.rollback()
        await self.audit_repo.record(
            "ledger.insufficient_funds",
            message=reason,
            user_id=user_id,
            actor_id=admin_id,
            entity_type="transaction" if transaction_id is not None else None,
            entity_id=transaction_id,
            severity=AuditSeverity.WARNING,
            details={
                "operation": operation,
                "bucket": error.context.get("bucket"),
                "requested": str(error.requested),
                "available": str(error.available),
            },
        )
        await self.commit()

    async def _offset(
        self,
        original: Transaction,
        reason: str,
        admin_id: int | None,
    ) -> Transaction:
        ensure_transition(
            "transaction", original.status, TransactionStatus.REVERSED
        )
        now = utc_now()
        marked = await self.transaction_repo.compare_and_set_status(
            original.id,
            [TransactionStatus.COMPLETED],
            TransactionStatus.REVERSED,
            is_reversed=True,
            reversed_at=now,
            reversed_by_admin_id=admin_id,
            reversal_reason=reason,
        )
        if not marked:
            raise InvalidTransition(
                f"Transaction {original.id} was reversed concurrently"
            )

        refs = {
            "related_transaction_id": original.id,
            "description": reason,
            "extra_data": {"reversed_transaction_id": original.id},
        }
        if original.is_credit:
            offset = await self.debit(
                original.user_id, original.bucket, original.amount,
                TransactionType.REVERSAL, **refs
            )
        else:
            offset = await self.credit(
                original.user_id, original.bucket, -original.amount,
                TransactionType.REVERSAL, **refs
            )

        await self.audit_repo.record(
            "ledger.reversal",
            message=reason,
            user_id=original.user_id,
            actor_id=admin_id,
            entity_type="transaction",
            entity_id=original.id,
            severity=AuditSeverity.WARNING,
            details={
                "original_amount": str(original.amount),
                "reversal_transaction_id": offset.id,
                "bucket": original.bucket,
            },
        )
        self.logger.info(
            f"Transaction {original.id} reversed by {offset.id}",
            extra={
                "transaction_id": original.id,
                "reversal_id": offset.id,
                "amount": str(original.amount),
                "admin_id": admin_id,
            },
        )
        return offset

    async def _record(
        self,
        user_id: int,
        bucket: str,
        signed_amount: Decimal,
        balance_after: Decimal,
        tx_type: str,
        **refs: Any,
    ) -> Transaction:
        quantum = self.settings.money_quantum
        balance_after = Decimal(str(balance_after)).quantize(quantum)
        now = utc_now()
        tx = await self.transaction_repo.create(
            user_id=user_id,
            type=str(tx_type),
            bucket=bucket,
            amount=signed_amount,
            balance_before=(balance_after - signed_amount).quantize(quantum),
            balance_after=balance_after,
            currency=self.settings.deposit_currency,
            status=TransactionStatus.COMPLETED,
            completed_at=now,
            created_at=now,
            **refs,
        )
        self.logger.debug(
            f"Ledger {tx_type} {signed_amount} on {bucket} for user {user_id}",
            extra={
                "transaction_id": tx.id,
                "user_id": user_id,
                "bucket": bucket,
                "amount": str(signed_amount),
                "balance_after": str(balance_after),
            },
        )
        return tx

    async def _ensure_not_frozen(self, user_id: int) -> None:
        stmt = select(User.ledger_frozen).where(User.id == user_id)
        result = await self.session.execute(stmt)
        frozen = result.scalar_one_or_none()
        if frozen is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)
        if frozen:
            raise BalanceInvariantViolation(
                f"Ledger of user {user_id} is frozen pending reconciliation",
                user_id=user_id,
            )

    def _amount(self, amount: Decimal) -> Decimal:
        return to_amount(amount, self.settings.money_scale)

    @staticmethod
    def _bucket(bucket: str) -> str:
        try:
            return BalanceBucket(bucket).value
        except ValueError as e:
            raise InvalidAmount(f"Unknown balance bucket: {bucket}") from e
