"""
Withdrawal approval repository.

Approvals are inserted with ON CONFLICT DO NOTHING so a second approval
by the same admin is detected without raising.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.withdrawal_approval import WithdrawalApproval
from settlement.repositories.base import BaseRepository


class WithdrawalApprovalRepository(BaseRepository[WithdrawalApproval]):
    """Withdrawal approval repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize withdrawal approval repository."""
        super().__init__(WithdrawalApproval, session)

    async def add_if_absent(
        self, withdrawal_id: int, admin_id: int, note: str | None = None
    ) -> bool:
        """
        Record an approval.

        Returns:
            True if the approval was added, False if the admin already approved
        """
        new_id = await self.insert_ignore(
            ["withdrawal_id", "admin_id"],
            withdrawal_id=withdrawal_id,
            admin_id=admin_id,
            note=note,
        )
        return new_id is not None

    async def count_for(self, withdrawal_id: int) -> int:
        stmt = select(func.count(WithdrawalApproval.id)).where(
            WithdrawalApproval.withdrawal_id == withdrawal_id
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def admin_ids_for(self, withdrawal_id: int) -> list[int]:
        stmt = (
            select(WithdrawalApproval.admin_id)
            .where(WithdrawalApproval.withdrawal_id == withdrawal_id)
            .order_by(WithdrawalApproval.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
