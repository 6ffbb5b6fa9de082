"""
Withdrawal query service.

Read-only access to withdrawals and their approvals.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.withdrawal import Withdrawal
from settlement.models.withdrawal_approval import WithdrawalApproval
from settlement.repositories.withdrawal_approval_repository import (
    WithdrawalApprovalRepository,
)
from settlement.repositories.withdrawal_repository import WithdrawalRepository


class WithdrawalQueryService:
    """Withdrawal lookups and listings."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.withdrawal_repo = WithdrawalRepository(session)
        self.approval_repo = WithdrawalApprovalRepository(session)

    async def get_withdrawal(self, withdrawal_id: int) -> Withdrawal | None:
        return await self.withdrawal_repo.get_by_id(withdrawal_id)

    async def get_by_reference(self, reference_id: str) -> Withdrawal | None:
        return await self.withdrawal_repo.get_by_reference(reference_id)

    async def get_user_withdrawals(
        self,
        user_id: int,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Withdrawal]:
        """
        Get a user's withdrawals, newest first.

        Args:
            user_id: User ID
            status: Optional status filter
            limit: Page size
            offset: Page offset

        Returns:
            List of withdrawals
        """
        stmt = select(Withdrawal).where(Withdrawal.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Withdrawal.status == status)
        stmt = (
            stmt.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_pending_approval(self, limit: int = 50) -> list[Withdrawal]:
        return await self.withdrawal_repo.find_pending_approval(limit)

    async def get_approvals(self, withdrawal_id: int) -> list[WithdrawalApproval]:
        """Approvals of a withdrawal in the order they were given."""
        return await self.approval_repo.find_all(withdrawal_id=withdrawal_id)
