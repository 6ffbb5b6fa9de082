"""
Bonus repository.

Data access layer for Bonus model.
"""

from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.bonus import Bonus
from settlement.models.enums import BonusStatus, BonusType
from settlement.repositories.base import BaseRepository


class BonusRepository(BaseRepository[Bonus]):
    """Bonus repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize bonus repository."""
        super().__init__(Bonus, session)

    async def get_by_dedupe_key(self, dedupe_key: str) -> Bonus | None:
        return await self.get_by(dedupe_key=dedupe_key)

    async def create_if_absent(self, **data) -> Bonus | None:
        """
        Create a bonus unless its dedupe key already exists.

        Returns:
            New bonus, or None if a bonus with the same key exists
        """
        new_id = await self.insert_ignore(["dedupe_key"], **data)
        if new_id is None:
            return None
        return await self.get_by_id(new_id)

    async def find_daily_for_date(self, bonus_date: date) -> list[Bonus]:
        """Daily bonus rows already written for ``bonus_date``, oldest first."""
        stmt = (
            select(Bonus)
            .where(
                Bonus.bonus_date == bonus_date,
                Bonus.type == BonusType.DAILY,
                Bonus.batch_id.is_not(None),
            )
            .order_by(Bonus.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def next_batch_id(self) -> int:
        stmt = select(func.max(Bonus.batch_id))
        result = await self.session.execute(stmt)
        return (result.scalar() or 0) + 1

    async def find_failed_since(self, since: datetime) -> list[Bonus]:
        """Failed bonuses created since ``since``, oldest first."""
        stmt = (
            select(Bonus)
            .where(
                Bonus.status == BonusStatus.FAILED,
                Bonus.created_at >= since,
            )
            .order_by(Bonus.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
