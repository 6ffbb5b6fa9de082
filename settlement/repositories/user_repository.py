"""
User repository.

User lookups, referral chain traversal and bonus eligibility queries.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.balance import Balance
from settlement.models.enums import BalanceBucket
from settlement.models.user import User
from settlement.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def find_with_deposit_address(self) -> list[User]:
        """Active users whose deposit address must be watched."""
        stmt = (
            select(User)
            .where(User.deposit_address.is_not(None), User.is_active.is_(True))
            .order_by(User.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_referral_chain(
        self, user_id: int, max_levels: int
    ) -> list[tuple[int, User]]:
        """
        Walk up the referral chain.

        Args:
            user_id: User whose referrers are wanted
            max_levels: Maximum depth

        Returns:
            List of (level, referrer) starting at level 1. Stops early on a
            missing referrer or a cycle.
        """
        chain: list[tuple[int, User]] = []
        seen = {user_id}
        user = await self.get_by_id(user_id)

        for level in range(1, max_levels + 1):
            if user is None or user.referrer_id is None:
                break
            if user.referrer_id in seen:
                break
            referrer = await self.get_by_id(user.referrer_id)
            if referrer is None:
                break
            chain.append((level, referrer))
            seen.add(referrer.id)
            user = referrer

        return chain

    async def find_bonus_eligible(self) -> list[tuple[User, Decimal]]:
        """
        Users eligible for the daily distribution with their deposit balance.

        Eligible means active, with a first-deposit unlock date set and a
        positive deposit balance.

        Returns:
            List of (user, deposit_balance) ordered by user ID
        """
        stmt = (
            select(User, Balance.amount)
            .join(Balance, Balance.user_id == User.id)
            .where(
                Balance.bucket == BalanceBucket.DEPOSIT,
                Balance.amount > 0,
                User.is_active.is_(True),
                User.deposit_unlock_at.is_not(None),
            )
            .order_by(User.id)
        )
        result = await self.session.execute(stmt)
        return [(user, amount) for user, amount in result.all()]
