"""
Withdrawal service facade.

Delegates to the specialised handlers of the approval workflow:
- WithdrawalRequestHandler: validation and creation
- WithdrawalLifecycleHandler: approvals, rejection, cancellation
- WithdrawalDispatchHandler: debit and payout
- WithdrawalQueryService: lookups
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import Settings
from settlement.models.enums import BalanceBucket
from settlement.models.withdrawal import Withdrawal
from settlement.models.withdrawal_approval import WithdrawalApproval
from settlement.services.base_service import BaseService
from settlement.services.blockchain.interfaces import PayoutDispatcher
from settlement.services.events import EventDispatcher
from settlement.services.withdrawal.withdrawal_dispatch_handler import (
    DispatchSummary,
    WithdrawalDispatchHandler,
)
from settlement.services.withdrawal.withdrawal_lifecycle_handler import (
    ApprovalOutcome,
    WithdrawalLifecycleHandler,
)
from settlement.services.withdrawal.withdrawal_query_service import (
    WithdrawalQueryService,
)
from settlement.services.withdrawal.withdrawal_request_handler import (
    WithdrawalRequestHandler,
)


class WithdrawalService(BaseService):
    """Withdrawal approval workflow facade."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        super().__init__(session, settings, events)
        self.request_handler = WithdrawalRequestHandler(session, self.settings, self.events)
        self.lifecycle_handler = WithdrawalLifecycleHandler(
            session, self.settings, self.events
        )
        self.dispatch_handler = WithdrawalDispatchHandler(
            session, self.settings, self.events
        )
        self.query_service = WithdrawalQueryService(session)

    async def create_withdrawal(
        self,
        user_id: int,
        amount: Decimal,
        to_address: str,
        source: str = BalanceBucket.BONUS,
        network: str | None = None,
    ) -> Withdrawal:
        return await self.request_handler.create_withdrawal(
            user_id, amount, to_address, source=source, network=network
        )

    async def approve_withdrawal(
        self, withdrawal_id: int, admin_id: int, note: str | None = None
    ) -> ApprovalOutcome:
        return await self.lifecycle_handler.approve(withdrawal_id, admin_id, note)

    async def reject_withdrawal(
        self, withdrawal_id: int, admin_id: int, reason: str
    ) -> Withdrawal:
        return await self.lifecycle_handler.reject(withdrawal_id, admin_id, reason)

    async def cancel_withdrawal(
        self, withdrawal_id: int, user_id: int | None = None
    ) -> Withdrawal:
        return await self.lifecycle_handler.cancel(withdrawal_id, user_id)

    async def verify_two_factor(self, withdrawal_id: int) -> Withdrawal:
        return await self.lifecycle_handler.mark_two_factor_verified(withdrawal_id)

    async def process_withdrawal(
        self, withdrawal_id: int, dispatcher: PayoutDispatcher
    ) -> Withdrawal:
        return await self.dispatch_handler.process_withdrawal(withdrawal_id, dispatcher)

    async def process_approved(
        self, dispatcher: PayoutDispatcher, limit: int = 50
    ) -> DispatchSummary:
        return await self.dispatch_handler.process_approved(dispatcher, limit)

    async def get_withdrawal(self, withdrawal_id: int) -> Withdrawal | None:
        return await self.query_service.get_withdrawal(withdrawal_id)

    async def get_user_withdrawals(
        self,
        user_id: int,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Withdrawal]:
        return await self.query_service.get_user_withdrawals(
            user_id, status=status, limit=limit, offset=offset
        )

    async def get_pending_approval(self, limit: int = 50) -> list[Withdrawal]:
        return await self.query_service.get_pending_approval(limit)

    async def get_approvals(self, withdrawal_id: int) -> list[WithdrawalApproval]:
        return await self.query_service.get_approvals(withdrawal_id)
