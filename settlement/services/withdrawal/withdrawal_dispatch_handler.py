"""
Withdrawal dispatch handling module.

Moves approved withdrawals to the payout signer. The debit is committed
before the external call and compensated by a reversal if the signer
does not accept the payout, so no funds are held while the call is in
flight and no debit survives a failed payout.
"""

from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.business_constants import (
    REASON_DISPATCH_FAILED,
    REASON_INSUFFICIENT_FUNDS,
)
from settlement.config.settings import Settings
from settlement.models.enums import AuditSeverity, TransactionType, WithdrawalStatus
from settlement.models.transitions import ensure_transition
from settlement.models.withdrawal import Withdrawal
from settlement.repositories.audit_event_repository import AuditEventRepository
from settlement.repositories.balance_repository import BalanceRepository
from settlement.repositories.withdrawal_repository import WithdrawalRepository
from settlement.services.base_service import BaseService
from settlement.services.blockchain.interfaces import PayoutDispatcher
from settlement.services.events import EventDispatcher, EventName
from settlement.services.ledger.ledger_service import LedgerService
from settlement.services.withdrawal.withdrawal_helpers import (
    plan_debits,
    recompute_amounts,
    source_buckets,
)
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import (
    ExternalDispatchFailed,
    InsufficientFunds,
    InvalidTransition,
    NotFound,
    QuorumNotReached,
    SettlementError,
    WithdrawalRestricted,
)


@dataclass
class DispatchSummary:
    """Result of one batch dispatch pass."""

    completed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    retry_later: list[int] = field(default_factory=list)


class WithdrawalDispatchHandler(BaseService):
    """Debits approved withdrawals and hands them to the payout signer."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.withdrawal_repo = WithdrawalRepository(session)
        self.balance_repo = BalanceRepository(session)
        self.audit_repo = AuditEventRepository(session)
        self.ledger = LedgerService(session, self.settings, self.events)

    async def process_withdrawal(
        self, withdrawal_id: int, dispatcher: PayoutDispatcher
    ) -> Withdrawal:
        """
        Dispatch one approved withdrawal.

        Steps, each its own unit of work:
        1. approved -> processing and ledger debit (committed)
        2. payout call, outside any transaction, keyed by the reference id
        3. processing -> completed with the chain hash, or compensation of
           the debit and processing -> approved (retryable failure) or
           failed (permanent failure)

        Args:
            withdrawal_id: Withdrawal ID
            dispatcher: Payout signer client

        Returns:
            The completed withdrawal

        Raises:
            NotFound: Unknown withdrawal
            QuorumNotReached: Withdrawal is still collecting approvals
            InvalidTransition: Withdrawal is not approved
            WithdrawalRestricted: Two-factor confirmation is missing
            InsufficientFunds: Source balance no longer covers the amount
            ExternalDispatchFailed: Payout was not accepted
        """
        withdrawal, debit_ids = await self._begin(withdrawal_id)
        to_address = withdrawal.to_address
        net_amount = withdrawal.net_amount
        reference = withdrawal.reference_id

        try:
            receipt = await dispatcher.send(to_address, net_amount, reference)
        except ExternalDispatchFailed as e:
            await self._compensate(withdrawal_id, debit_ids, e)
            raise

        try:
            current = await self.withdrawal_repo.reload(withdrawal_id)
            ensure_transition("withdrawal", current.status, WithdrawalStatus.COMPLETED)
            completed = await self.withdrawal_repo.compare_and_set_status(
                withdrawal_id,
                [WithdrawalStatus.PROCESSING],
                WithdrawalStatus.COMPLETED,
                tx_hash=receipt.tx_hash,
                completed_at=utc_now(),
                failure_reason=None,
            )
            if not completed:
                raise InvalidTransition(
                    f"Withdrawal {withdrawal_id} left processing during dispatch"
                )
            withdrawal = await self.withdrawal_repo.reload(withdrawal_id)
            self.emit(
                EventName.WITHDRAWAL_COMPLETED,
                withdrawal_id=withdrawal_id,
                user_id=withdrawal.user_id,
                amount=str(withdrawal.amount),
                net_amount=str(withdrawal.net_amount),
                tx_hash=receipt.tx_hash,
            )
            await self.commit()
        except (SQLAlchemyError, SettlementError):
            await self.rollback()
            # Payout went out; the debit stays and the row needs reconciliation
            self.logger.critical(
                f"Withdrawal {withdrawal_id} paid out as {receipt.tx_hash} "
                "but could not be marked completed",
                extra={"withdrawal_id": withdrawal_id, "tx_hash": receipt.tx_hash},
            )
            raise

        self.logger.info(
            f"Withdrawal {reference} completed",
            extra={
                "withdrawal_id": withdrawal_id,
                "amount": str(withdrawal.amount),
                "net_amount": str(net_amount),
                "tx_hash": receipt.tx_hash,
            },
        )
        return withdrawal

    async def process_approved(
        self, dispatcher: PayoutDispatcher, limit: int = 50
    ) -> DispatchSummary:
        """
        Dispatch approved withdrawals, oldest first.

        Failures are recorded per withdrawal and never stop the batch.
        """
        approved = await self.withdrawal_repo.find_approved(limit)
        ids = [w.id for w in approved]
        await self.commit()

        summary = DispatchSummary()
        for withdrawal_id in ids:
            try:
                await self.process_withdrawal(withdrawal_id, dispatcher)
            except ExternalDispatchFailed as e:
                if e.retryable:
                    summary.retry_later.append(withdrawal_id)
                else:
                    summary.failed.append(withdrawal_id)
                continue
            except SettlementError as e:
                self.logger.warning(
                    f"Withdrawal {withdrawal_id} not dispatched: {e}",
                    extra={"withdrawal_id": withdrawal_id, "code": e.code},
                )
                summary.failed.append(withdrawal_id)
                continue
            summary.completed.append(withdrawal_id)
        return summary

    async def _begin(self, withdrawal_id: int) -> tuple[Withdrawal, list[int]]:
        try:
            withdrawal = await self.withdrawal_repo.get_for_update(withdrawal_id)
            if withdrawal is None:
                raise NotFound(
                    f"Withdrawal {withdrawal_id} not found",
                    withdrawal_id=withdrawal_id,
                )
            if withdrawal.can_be_approved:
                raise QuorumNotReached(
                    f"Withdrawal {withdrawal_id} is not approved yet",
                    status=withdrawal.status,
                    required=withdrawal.required_approvals,
                )
            ensure_transition("withdrawal", withdrawal.status, WithdrawalStatus.PROCESSING)
            if withdrawal.requires_two_factor and not withdrawal.two_factor_verified:
                raise WithdrawalRestricted(
                    f"Withdrawal {withdrawal_id} awaits two-factor confirmation",
                    withdrawal_id=withdrawal_id,
                )

            recompute_amounts(withdrawal, self.settings.money_scale)
            started = await self.withdrawal_repo.compare_and_set_status(
                withdrawal_id,
                [WithdrawalStatus.APPROVED],
                WithdrawalStatus.PROCESSING,
                processed_at=utc_now(),
                dispatch_attempts=withdrawal.dispatch_attempts + 1,
            )
            if not started:
                raise InvalidTransition(
                    f"Withdrawal {withdrawal_id} is already being dispatched"
                )
            withdrawal = await self.withdrawal_repo.reload(withdrawal_id)

            debit_ids = await self._debit(withdrawal)
            await self.commit()
            return withdrawal, debit_ids

        except InsufficientFunds as e:
            # Undo any partial debit of a mixed source, then fail the request
            await self.rollback()
            await self._fail_insufficient(withdrawal_id, str(e))
            raise
        except Exception:
            await self.rollback()
            raise

    async def _debit(self, withdrawal: Withdrawal) -> list[int]:
        buckets = source_buckets(withdrawal.source)
        balances = await self.balance_repo.get_amounts(withdrawal.user_id)
        plan = plan_debits(withdrawal.amount, buckets, balances)

        debit_ids: list[int] = []
        for index, (bucket, amount) in enumerate(plan):
            tx = await self.ledger.debit(
                withdrawal.user_id,
                bucket,
                amount,
                TransactionType.WITHDRAWAL,
                withdrawal_id=withdrawal.id,
                fee=withdrawal.fee if index == 0 else 0,
                description=f"Withdrawal {withdrawal.reference_id}",
            )
            debit_ids.append(tx.id)
        return debit_ids

    async def _compensate(
        self,
        withdrawal_id: int,
        debit_ids: list[int],
        error: ExternalDispatchFailed,
    ) -> None:
        reason = f"{REASON_DISPATCH_FAILED}: {error.message}"
        try:
            for tx_id in debit_ids:
                await self.ledger.compensate(tx_id, reason)

            target = (
                WithdrawalStatus.APPROVED if error.retryable
                else WithdrawalStatus.FAILED
            )
            current = await self.withdrawal_repo.reload(withdrawal_id)
            ensure_transition("withdrawal", current.status, target)
            await self.withdrawal_repo.compare_and_set_status(
                withdrawal_id,
                [WithdrawalStatus.PROCESSING],
                target,
                failure_reason=reason,
            )
            withdrawal = await self.withdrawal_repo.reload(withdrawal_id)
            await self.audit_repo.record(
                "withdrawal.dispatch_failed",
                message=reason,
                user_id=withdrawal.user_id,
                entity_type="withdrawal",
                entity_id=withdrawal_id,
                severity=AuditSeverity.WARNING,
                details={
                    "retryable": error.retryable,
                    "attempts": withdrawal.dispatch_attempts,
                    "compensated_transactions": debit_ids,
                },
            )
            if target == WithdrawalStatus.FAILED:
                self.emit(
                    EventName.WITHDRAWAL_FAILED,
                    withdrawal_id=withdrawal_id,
                    user_id=withdrawal.user_id,
                    amount=str(withdrawal.amount),
                    reason=reason,
                )
            await self.commit()
        except Exception:
            await self.rollback()
            self.logger.critical(
                f"Compensation of withdrawal {withdrawal_id} failed",
                extra={"withdrawal_id": withdrawal_id, "transactions": debit_ids},
            )
            raise

        self.logger.warning(
            f"Payout of withdrawal {withdrawal_id} failed, debit compensated",
            extra={
                "withdrawal_id": withdrawal_id,
                "retryable": error.retryable,
                "error": error.message,
            },
        )

    async def _fail_insufficient(self, withdrawal_id: int, message: str) -> None:
        reason = REASON_INSUFFICIENT_FUNDS
        current = await self.withdrawal_repo.reload(withdrawal_id)
        ensure_transition("withdrawal", current.status, WithdrawalStatus.FAILED)
        await self.withdrawal_repo.compare_and_set_status(
            withdrawal_id,
            [WithdrawalStatus.APPROVED, WithdrawalStatus.PROCESSING],
            WithdrawalStatus.FAILED,
            failure_reason=reason,
        )
        withdrawal = await self.withdrawal_repo.reload(withdrawal_id)
        await self.audit_repo.record(
            "withdrawal.insufficient_funds",
            message=message,
            user_id=withdrawal.user_id,
            entity_type="withdrawal",
            entity_id=withdrawal.id,
            severity=AuditSeverity.WARNING,
            details={"amount": str(withdrawal.amount), "source": withdrawal.source},
        )
        self.emit(
            EventName.WITHDRAWAL_FAILED,
            withdrawal_id=withdrawal.id,
            user_id=withdrawal.user_id,
            amount=str(withdrawal.amount),
            reason=reason,
        )
        await self.commit()
        self.logger.warning(
            f"Withdrawal {withdrawal_id} failed: {message}",
            extra={"withdrawal_id": withdrawal_id, "reason": reason},
        )
