"""
Deposit repository.

Data access layer for Deposit model.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.deposit import Deposit
from settlement.models.enums import DepositStatus
from settlement.repositories.base import BaseRepository


# Deposits that count towards velocity limits
_LIVE_STATUSES = (
    DepositStatus.PENDING,
    DepositStatus.CONFIRMING,
    DepositStatus.CONFIRMED,
)


class DepositRepository(BaseRepository[Deposit]):
    """Deposit repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize deposit repository."""
        super().__init__(Deposit, session)

    async def get_by_tx_hash(self, tx_hash: str) -> Deposit | None:
        """
        Get deposit by transaction hash.

        Args:
            tx_hash: Transaction hash

        Returns:
            Deposit or None
        """
        return await self.get_by(tx_hash=tx_hash)

    async def find_other_with_tx_hash(
        self, tx_hash: str, exclude_id: int
    ) -> Deposit | None:
        stmt = select(Deposit).where(
            Deposit.tx_hash == tx_hash, Deposit.id != exclude_id
        ).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_unconfirmed(self, limit: int = 500) -> list[Deposit]:
        """
        Get deposits still waiting for confirmations.

        Args:
            limit: Max number of results

        Returns:
            Pending and confirming deposits, oldest first
        """
        stmt = (
            select(Deposit)
            .where(Deposit.status.in_([
                DepositStatus.PENDING, DepositStatus.CONFIRMING
            ]))
            .order_by(Deposit.created_at, Deposit.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_stale_pending(self, now: datetime) -> list[Deposit]:
        """Pending deposits whose expiry time has passed."""
        stmt = (
            select(Deposit)
            .where(
                Deposit.status == DepositStatus.PENDING,
                Deposit.expires_at.is_not(None),
                Deposit.expires_at < now,
            )
            .order_by(Deposit.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_needing_post_processing(self, limit: int = 100) -> list[Deposit]:
        """Confirmed deposits whose referral/bonus follow-up did not finish."""
        stmt = (
            select(Deposit)
            .where(
                Deposit.status == DepositStatus.CONFIRMED,
                (Deposit.bonus_processed.is_(False))
                | (Deposit.referral_processed.is_(False)),
            )
            .order_by(Deposit.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_confirmed(self, user_id: int) -> int:
        return await self.count(user_id=user_id, status=DepositStatus.CONFIRMED)

    async def sum_since(
        self,
        user_id: int,
        since: datetime,
        exclude_id: int | None = None,
    ) -> Decimal:
        """
        Sum of live deposits created since ``since``.

        Args:
            user_id: User ID
            since: Window start
            exclude_id: Deposit left out of the sum (the one being checked)

        Returns:
            Total amount
        """
        stmt = select(func.coalesce(func.sum(Deposit.amount), 0)).where(
            Deposit.user_id == user_id,
            Deposit.created_at >= since,
            Deposit.status.in_(_LIVE_STATUSES),
        )
        if exclude_id is not None:
            stmt = stmt.where(Deposit.id != exclude_id)
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar() or 0))

    async def find_user_deposits_since(
        self, user_id: int, since: datetime
    ) -> list[Deposit]:
        stmt = (
            select(Deposit)
            .where(
                Deposit.user_id == user_id,
                Deposit.created_at >= since,
                Deposit.status.in_(_LIVE_STATUSES),
            )
            .order_by(Deposit.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def total_confirmed(self, user_id: int) -> Decimal:
        stmt = select(func.coalesce(func.sum(Deposit.amount), 0)).where(
            Deposit.user_id == user_id,
            Deposit.status == DepositStatus.CONFIRMED,
        )
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar() or 0))

    async def count_since(self, user_id: int, since: datetime) -> int:
        stmt = select(func.count(Deposit.id)).where(
            Deposit.user_id == user_id,
            Deposit.created_at >= since,
            Deposit.status.in_(_LIVE_STATUSES),
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0
