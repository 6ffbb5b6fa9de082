"""
Withdrawal repository.

Data access layer for Withdrawal model.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.enums import WithdrawalStatus
from settlement.models.withdrawal import Withdrawal
from settlement.repositories.base import BaseRepository


OPEN_STATUSES = (
    WithdrawalStatus.PENDING,
    WithdrawalStatus.AWAITING_APPROVAL,
    WithdrawalStatus.APPROVED,
    WithdrawalStatus.PROCESSING,
)

# Withdrawals that count towards daily limits
_COUNTED_STATUSES = OPEN_STATUSES + (WithdrawalStatus.COMPLETED,)


class WithdrawalRepository(BaseRepository[Withdrawal]):
    """Withdrawal repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize withdrawal repository."""
        super().__init__(Withdrawal, session)

    async def get_by_reference(self, reference_id: str) -> Withdrawal | None:
        return await self.get_by(reference_id=reference_id)

    async def count_open(self, user_id: int) -> int:
        """Count withdrawals of the user that were not dispatched yet."""
        stmt = select(func.count(Withdrawal.id)).where(
            Withdrawal.user_id == user_id,
            Withdrawal.status.in_(OPEN_STATUSES),
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def sum_since(self, user_id: int, since: datetime) -> Decimal:
        """Gross amount requested since ``since`` (open or completed)."""
        stmt = select(func.coalesce(func.sum(Withdrawal.amount), 0)).where(
            Withdrawal.user_id == user_id,
            Withdrawal.created_at >= since,
            Withdrawal.status.in_(_COUNTED_STATUSES),
        )
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar() or 0))

    async def get_latest(self, user_id: int) -> Withdrawal | None:
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.user_id == user_id)
            .order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def distinct_addresses(self, user_id: int) -> list[str]:
        stmt = (
            select(Withdrawal.to_address)
            .where(Withdrawal.user_id == user_id)
            .distinct()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_other_users_for_address(
        self, address: str, user_id: int
    ) -> int:
        """Number of other users that withdrew to ``address``."""
        stmt = select(func.count(func.distinct(Withdrawal.user_id))).where(
            Withdrawal.to_address == address,
            Withdrawal.user_id != user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def find_user_withdrawals_since(
        self, user_id: int, since: datetime
    ) -> list[Withdrawal]:
        stmt = (
            select(Withdrawal)
            .where(
                Withdrawal.user_id == user_id,
                Withdrawal.created_at >= since,
                Withdrawal.status.in_(_COUNTED_STATUSES),
            )
            .order_by(Withdrawal.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_approved(self, limit: int = 50) -> list[Withdrawal]:
        """Approved withdrawals waiting for dispatch, oldest first."""
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.status == WithdrawalStatus.APPROVED)
            .order_by(Withdrawal.approved_at, Withdrawal.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_pending_approval(self, limit: int = 50) -> list[Withdrawal]:
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.status.in_([
                WithdrawalStatus.PENDING, WithdrawalStatus.AWAITING_APPROVAL
            ]))
            .order_by(Withdrawal.created_at, Withdrawal.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def total_completed(self, user_id: int) -> Decimal:
        stmt = select(func.coalesce(func.sum(Withdrawal.amount), 0)).where(
            Withdrawal.user_id == user_id,
            Withdrawal.status == WithdrawalStatus.COMPLETED,
        )
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar() or 0))
