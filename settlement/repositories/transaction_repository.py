"""
Transaction repository.

Ledger entry queries. Rows are append-only: the only in-place change is
marking a credit as reversed.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.transaction import Transaction
from settlement.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    """Transaction repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize transaction repository."""
        super().__init__(Transaction, session)

    async def get_by_deposit(self, deposit_id: int) -> Transaction | None:
        return await self.get_by(deposit_id=deposit_id)

    async def sum_by_bucket(self, user_id: int) -> dict[str, Decimal]:
        """
        Sum of all ledger entries per bucket.

        Every row corresponds to exactly one applied balance change, so
        this sum must equal the stored balance.
        """
        stmt = (
            select(Transaction.bucket, func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.user_id == user_id)
            .group_by(Transaction.bucket)
        )
        result = await self.session.execute(stmt)
        return {bucket: Decimal(str(total)) for bucket, total in result.all()}

    async def get_history(
        self,
        user_id: int,
        type: str | None = None,
        bucket: str | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        Get a user's ledger history, newest first.

        Args:
            user_id: User ID
            type: Filter by transaction type
            bucket: Filter by balance bucket
            status: Filter by status
            start: Inclusive lower bound on created_at
            end: Exclusive upper bound on created_at
            limit: Page size
            offset: Rows to skip

        Returns:
            List of transactions
        """
        stmt = select(Transaction).where(Transaction.user_id == user_id)
        if type:
            stmt = stmt.where(Transaction.type == type)
        if bucket:
            stmt = stmt.where(Transaction.bucket == bucket)
        if status:
            stmt = stmt.where(Transaction.status == status)
        if start:
            stmt = stmt.where(Transaction.created_at >= start)
        if end:
            stmt = stmt.where(Transaction.created_at < end)

        stmt = (
            stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
