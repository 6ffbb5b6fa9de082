"""
Settlement engine facade.

The surface offered to collaborators (bot handlers, admin tools, jobs).
Every method returns a ServiceResult: domain errors become a failed result
carrying the error's stable code, database errors are logged and reported
as ``database_error``. The session is rolled back on every failure.
"""

from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.user import User
from settlement.repositories.balance_repository import BalanceRepository
from settlement.repositories.user_repository import UserRepository
from settlement.services.base_service import BaseService, ServiceResult
from settlement.services.blockchain.interfaces import PayoutDispatcher
from settlement.services.bonus.bonus_service import BonusService
from settlement.services.deposit.deposit_service import DepositService
from settlement.services.events import EventDispatcher
from settlement.services.fraud.fraud_gate import FraudGate
from settlement.services.ledger.ledger_service import LedgerService
from settlement.services.withdrawal.withdrawal_service import WithdrawalService
from settlement.utils.exceptions import (
    ApprovalAlreadyGiven,
    BalanceInvariantViolation,
    NotFound,
    SettlementError,
)


T = TypeVar("T")

DATABASE_ERROR = "database_error"


class SettlementService(BaseService):
    """
    Ledger & settlement engine.

    Wires the ledger, deposit tracker, withdrawal workflow, bonus engine
    and fraud gate onto one session.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.user_repo = UserRepository(session)
        self.balance_repo = BalanceRepository(session)

        self.ledger = LedgerService(session, self.settings, self.events)
        self.deposits = DepositService(session, self.settings, self.events)
        self.withdrawals = WithdrawalService(session, self.settings, self.events)
        self.bonuses = BonusService(session, self.settings, self.events)
        self.fraud_gate = FraudGate(session, self.settings, self.events)

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        commit: bool = False,
    ) -> ServiceResult:
        try:
            data = await call()
            if commit:
                await self.commit()
            return ServiceResult(success=True, data=data)
        except SettlementError as e:
            await self.rollback()
            log = (
                self.logger.critical
                if isinstance(e, BalanceInvariantViolation)
                else self.logger.warning
            )
            log(
                f"{operation} failed: {e.message}",
                extra={"operation": operation, **e.to_dict()},
            )
            return ServiceResult(
                success=False, error=e.message, error_code=e.code
            )
        except SQLAlchemyError as e:
            await self.rollback()
            self.logger.error(
                f"{operation} failed with database error",
                extra={"operation": operation, "error": str(e)},
                exc_info=True,
            )
            return ServiceResult(
                success=False,
                error="Database error",
                error_code=DATABASE_ERROR,
            )

    # Users

    async def register_user(
        self,
        username: str | None = None,
        referrer_id: int | None = None,
        deposit_address: str | None = None,
    ) -> ServiceResult:
        """Create a user with empty balance buckets."""

        async def call() -> User:
            if referrer_id is not None:
                if await self.user_repo.get_by_id(referrer_id) is None:
                    raise NotFound(
                        f"Referrer {referrer_id} not found", referrer_id=referrer_id
                    )
            user = await self.user_repo.create(
                username=username,
                referrer_id=referrer_id,
                deposit_address=deposit_address,
            )
            await self.balance_repo.ensure_buckets(user.id)
            return user

        return await self._run("register_user", call, commit=True)

    # Deposits

    async def create_deposit(
        self,
        user_id: int,
        tx_hash: str,
        amount: Decimal,
        confirmations: int = 0,
        from_address: str | None = None,
        to_address: str | None = None,
        block_number: int | None = None,
    ) -> ServiceResult:
        return await self._run(
            "create_deposit",
            lambda: self.deposits.create_deposit(
                user_id,
                tx_hash,
                amount,
                confirmations=confirmations,
                from_address=from_address,
                to_address=to_address,
                block_number=block_number,
            ),
        )

    async def confirm_deposit(
        self, deposit_id: int, confirmations: int
    ) -> ServiceResult:
        return await self._run(
            "confirm_deposit",
            lambda: self.deposits.confirm_deposit(deposit_id, confirmations),
        )

    # Withdrawals

    async def create_withdrawal(
        self,
        user_id: int,
        amount: Decimal,
        to_address: str,
        source: str = "bonus",
        network: str | None = None,
    ) -> ServiceResult:
        return await self._run(
            "create_withdrawal",
            lambda: self.withdrawals.create_withdrawal(
                user_id, amount, to_address, source=source, network=network
            ),
        )

    async def approve_withdrawal(
        self, withdrawal_id: int, admin_id: int, note: str | None = None
    ) -> ServiceResult:
        """
        Approve a withdrawal.

        A repeated approval by the same admin succeeds without effect; the
        result then carries the ``approval_already_given`` code.
        """
        result = await self._run(
            "approve_withdrawal",
            lambda: self.withdrawals.approve_withdrawal(withdrawal_id, admin_id, note),
        )
        if result.success and not result.data.added:
            result.error_code = ApprovalAlreadyGiven.code
            result.error = "Admin already approved this withdrawal"
        return result

    async def reject_withdrawal(
        self, withdrawal_id: int, admin_id: int, reason: str
    ) -> ServiceResult:
        return await self._run(
            "reject_withdrawal",
            lambda: self.withdrawals.reject_withdrawal(withdrawal_id, admin_id, reason),
        )

    async def cancel_withdrawal(
        self, withdrawal_id: int, user_id: int | None = None
    ) -> ServiceResult:
        return await self._run(
            "cancel_withdrawal",
            lambda: self.withdrawals.cancel_withdrawal(withdrawal_id, user_id),
        )

    async def process_withdrawal(
        self, withdrawal_id: int, dispatcher: PayoutDispatcher
    ) -> ServiceResult:
        return await self._run(
            "process_withdrawal",
            lambda: self.withdrawals.process_withdrawal(withdrawal_id, dispatcher),
        )

    # Bonuses

    async def calculate_daily_bonuses(
        self, profit: Decimal, bonus_date: date | None = None
    ) -> ServiceResult:
        return await self._run(
            "calculate_daily_bonuses",
            lambda: self.bonuses.calculate_daily_bonuses(profit, bonus_date),
        )

    async def simulate_daily_bonuses(
        self, profit: Decimal, bonus_date: date | None = None
    ) -> ServiceResult:
        return await self._run(
            "simulate_daily_bonuses",
            lambda: self.bonuses.simulate_daily_bonuses(profit, bonus_date),
        )

    async def retry_failed_bonuses(self, days: int = 7) -> ServiceResult:
        return await self._run(
            "retry_failed_bonuses",
            lambda: self.bonuses.retry_failed_bonuses(days),
        )

    # Ledger

    async def get_balances(self, user_id: int) -> ServiceResult:
        async def call() -> dict[str, Decimal]:
            if await self.user_repo.get_by_id(user_id) is None:
                raise NotFound(f"User {user_id} not found", user_id=user_id)
            return await self.ledger.get_balances(user_id)

        return await self._run("get_balances", call)

    async def get_transaction_history(
        self, user_id: int, **filters: Any
    ) -> ServiceResult:
        """
        User's ledger rows, newest first.

        Filters: type, bucket, status, start, end, limit, offset.
        """
        return await self._run(
            "get_transaction_history",
            lambda: self.ledger.get_transaction_history(user_id, **filters),
        )

    async def reverse_transaction(
        self, transaction_id: int, reason: str, admin_id: int
    ) -> ServiceResult:
        return await self._run(
            "reverse_transaction",
            lambda: self.ledger.reverse(transaction_id, reason, admin_id),
            commit=True,
        )

    async def adjust_balance(
        self,
        user_id: int,
        bucket: str,
        amount: Decimal,
        reason: str,
        admin_id: int,
    ) -> ServiceResult:
        return await self._run(
            "adjust_balance",
            lambda: self.ledger.adjust(user_id, bucket, amount, reason, admin_id),
            commit=True,
        )

    async def verify_user_balances(self, user_id: int) -> ServiceResult:
        return await self._run(
            "verify_user_balances",
            lambda: self.ledger.verify_user_balances(user_id),
        )

    # Fraud

    async def evaluate_user_risk(self, user_id: int) -> ServiceResult:
        return await self._run(
            "evaluate_user_risk",
            lambda: self.fraud_gate.evaluate_user(user_id),
            commit=True,
        )
