"""
Balance repository.

Atomic balance mutations. Amounts are never read-modified-written in
Python; every change is a single conditional UPDATE ... RETURNING.
"""

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.business_constants import BALANCE_BUCKETS
from settlement.models.balance import Balance
from settlement.repositories.base import BaseRepository


class BalanceRepository(BaseRepository[Balance]):
    """Balance repository with atomic credit/debit."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize balance repository."""
        super().__init__(Balance, session)

    async def ensure_buckets(self, user_id: int) -> None:
        """Create zero balance rows for every bucket the user lacks."""
        for bucket in BALANCE_BUCKETS:
            await self.insert_ignore(
                ["user_id", "bucket"],
                user_id=user_id,
                bucket=bucket,
                amount=Decimal("0"),
            )

    async def get_amount(self, user_id: int, bucket: str) -> Decimal:
        """
        Get current amount of one bucket.

        Returns:
            Amount, zero if the row does not exist yet
        """
        stmt = select(Balance.amount).where(
            Balance.user_id == user_id, Balance.bucket == bucket
        )
        result = await self.session.execute(stmt)
        amount = result.scalar_one_or_none()
        return amount if amount is not None else Decimal("0")

    async def get_amounts(self, user_id: int) -> dict[str, Decimal]:
        """Get amounts of all buckets (missing buckets report zero)."""
        stmt = select(Balance.bucket, Balance.amount).where(
            Balance.user_id == user_id
        )
        result = await self.session.execute(stmt)
        amounts = {bucket: Decimal("0") for bucket in BALANCE_BUCKETS}
        for bucket, amount in result.all():
            amounts[bucket] = amount
        return amounts

    async def credit(
        self, user_id: int, bucket: str, amount: Decimal
    ) -> Decimal:
        """
        Add ``amount`` to a bucket.

        Args:
            user_id: User ID
            bucket: Balance bucket
            amount: Positive amount

        Returns:
            Balance after the credit
        """
        balance_after = await self._apply(user_id, bucket, amount)
        if balance_after is None:
            await self.ensure_buckets(user_id)
            balance_after = await self._apply(user_id, bucket, amount)
        return balance_after

    async def debit(
        self, user_id: int, bucket: str, amount: Decimal
    ) -> Decimal | None:
        """
        Subtract ``amount`` from a bucket if it is covered.

        The guard ``amount >= :amount`` lives in the UPDATE itself, so two
        concurrent debits can never both succeed against the same funds.

        Returns:
            Balance after the debit, or None if funds are insufficient
        """
        return await self._apply(user_id, bucket, -amount, guard=amount)

    async def _apply(
        self,
        user_id: int,
        bucket: str,
        delta: Decimal,
        guard: Decimal | None = None,
    ) -> Decimal | None:
        conditions = [Balance.user_id == user_id, Balance.bucket == bucket]
        if guard is not None:
            conditions.append(Balance.amount >= guard)

        stmt = (
            update(Balance)
            .where(*conditions)
            .values(amount=Balance.amount + delta)
            .returning(Balance.amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
