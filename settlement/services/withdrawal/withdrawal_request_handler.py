"""
Withdrawal request handling module.

Validates and creates withdrawal requests. Nothing is debited here: funds
leave the ledger only when an approved withdrawal is dispatched.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.enums import AuditSeverity, BalanceBucket, WithdrawalStatus
from settlement.models.transitions import ensure_transition
from settlement.models.withdrawal import Withdrawal, generate_reference_id
from settlement.repositories.audit_event_repository import AuditEventRepository
from settlement.repositories.balance_repository import BalanceRepository
from settlement.repositories.user_repository import UserRepository
from settlement.repositories.withdrawal_repository import WithdrawalRepository
from settlement.services.base_service import BaseService
from settlement.services.events import EventDispatcher, EventName
from settlement.services.fraud.fraud_gate import FraudGate
from settlement.services.withdrawal.withdrawal_helpers import (
    calculate_fee,
    source_buckets,
)
from settlement.utils.datetime_utils import utc_now
from settlement.utils.exceptions import (
    FraudRejected,
    InsufficientFunds,
    InvalidAmount,
    NotFound,
    WithdrawalRestricted,
)
from settlement.utils.validation import to_amount, validate_payout_address


class WithdrawalRequestHandler(BaseService):
    """Handles withdrawal request creation."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.withdrawal_repo = WithdrawalRepository(session)
        self.user_repo = UserRepository(session)
        self.balance_repo = BalanceRepository(session)
        self.audit_repo = AuditEventRepository(session)
        self.fraud_gate = FraudGate(session, self.settings, self.events)

    async def create_withdrawal(
        self,
        user_id: int,
        amount: Decimal,
        to_address: str,
        source: str = BalanceBucket.BONUS,
        network: str | None = None,
    ) -> Withdrawal:
        """
        Create a withdrawal request.

        Checks run in order: amount, minimum, address format, user state,
        open-request and daily limits, deposit lock, available balance and
        finally the fraud gate. A passing request is moved to
        awaiting_approval, or left pending when no approvals are required.

        Args:
            user_id: Requesting user
            amount: Gross amount (fee included)
            to_address: Payout address
            source: deposit, bonus, referral or mixed (bonus then referral)
            network: Payout network (deployment default if omitted)

        Returns:
            Created withdrawal

        Raises:
            InvalidAmount: Bad amount, address or source
            WithdrawalRestricted: Lock period or request limits
            InsufficientFunds: Source balance does not cover the amount
            FraudRejected: Fraud gate veto
            NotFound: Unknown user
        """
        amount = to_amount(amount, self.settings.money_scale)
        network = (network or self.settings.deposit_network).upper()
        buckets = source_buckets(source)

        if amount < self.settings.minimum_withdrawal_amount:
            raise InvalidAmount(
                f"Minimum withdrawal is {self.settings.minimum_withdrawal_amount}",
                amount=str(amount),
                minimum=str(self.settings.minimum_withdrawal_amount),
            )

        if not validate_payout_address(to_address, network):
            raise InvalidAmount(
                f"Invalid {network} payout address",
                to_address=to_address,
                network=network,
            )

        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)
        if not user.is_active:
            raise WithdrawalRestricted("User is not active", user_id=user_id)

        await self._check_limits(user_id, amount)

        now = utc_now()
        if BalanceBucket.DEPOSIT in buckets and not user.is_deposit_unlocked(now):
            raise WithdrawalRestricted(
                "Deposit balance is locked",
                user_id=user_id,
                unlock_at=(
                    user.deposit_unlock_at.isoformat()
                    if user.deposit_unlock_at else None
                ),
            )

        balances = await self.balance_repo.get_amounts(user_id)
        available = sum((balances[b] for b in buckets), Decimal("0"))
        if available < amount:
            await self.audit_repo.record(
                "withdrawal.insufficient_funds",
                message="Withdrawal exceeds available balance",
                user_id=user_id,
                entity_type="withdrawal",
                severity=AuditSeverity.INFO,
                details={
                    "source": str(source),
                    "requested": str(amount),
                    "available": str(available),
                },
            )
            await self.commit()
            self.logger.warning(
                f"Withdrawal of {amount} refused for user {user_id}: insufficient funds",
                extra={
                    "user_id": user_id,
                    "requested": str(amount),
                    "available": str(available),
                },
            )
            raise InsufficientFunds(
                f"Insufficient {source} balance",
                available=available,
                requested=amount,
                user_id=user_id,
            )

        decision = await self.fraud_gate.check_withdrawal(user, amount, to_address)
        if not decision.allowed:
            # Keep the audit trail of the veto
            await self.commit()
            raise FraudRejected(
                decision.reason or "Withdrawal rejected by fraud checks",
                rule=decision.rule or "",
                user_id=user_id,
            )

        fee_percent = self.settings.withdrawal_fee_percent
        fee, net_amount = calculate_fee(amount, fee_percent, self.settings.money_scale)
        required = self.settings.required_approvals
        if decision.requires_additional_verification and required > 0:
            required += 1
        threshold = self.settings.two_factor_threshold

        withdrawal = await self.withdrawal_repo.create(
            reference_id=generate_reference_id(now),
            user_id=user_id,
            amount=amount,
            fee=fee,
            fee_percent=fee_percent,
            net_amount=net_amount,
            source=str(source),
            currency=self.settings.deposit_currency,
            network=network,
            to_address=to_address,
            status=WithdrawalStatus.PENDING,
            required_approvals=required,
            requires_additional_verification=decision.requires_additional_verification,
            requires_two_factor=threshold is not None and amount >= threshold,
            extra_data={"fraud_signals": decision.signals} if decision.signals else None,
        )

        if required > 0:
            ensure_transition(
                "withdrawal", withdrawal.status, WithdrawalStatus.AWAITING_APPROVAL
            )
            withdrawal.status = WithdrawalStatus.AWAITING_APPROVAL
            await self.session.flush()

        self.logger.info(
            f"Withdrawal {withdrawal.reference_id} created for user {user_id}",
            extra={
                "withdrawal_id": withdrawal.id,
                "user_id": user_id,
                "amount": str(amount),
                "fee": str(fee),
                "net_amount": str(net_amount),
                "source": str(source),
                "required_approvals": required,
            },
        )
        self.emit(
            EventName.WITHDRAWAL_CREATED,
            withdrawal_id=withdrawal.id,
            reference_id=withdrawal.reference_id,
            user_id=user_id,
            amount=str(amount),
            required_approvals=required,
        )
        await self.commit()
        return withdrawal

    async def _check_limits(self, user_id: int, amount: Decimal) -> None:
        open_count = await self.withdrawal_repo.count_open(user_id)
        if open_count >= self.settings.max_open_withdrawals:
            raise WithdrawalRestricted(
                "An open withdrawal request already exists",
                user_id=user_id,
                open_withdrawals=open_count,
            )

        since = utc_now() - timedelta(hours=24)
        requested_today = await self.withdrawal_repo.sum_since(user_id, since)
        if requested_today + amount > self.settings.daily_withdrawal_limit:
            raise WithdrawalRestricted(
                "Daily withdrawal limit exceeded",
                user_id=user_id,
                limit=str(self.settings.daily_withdrawal_limit),
                requested_today=str(requested_today),
            )
