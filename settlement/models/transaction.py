"""
Transaction model.

Append-only ledger entry. Every balance mutation writes exactly one row:
positive amounts are credits, negative amounts are debits.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement.models.base import Base
from settlement.models.enums import (
    REVERSIBLE_TRANSACTION_TYPES,
    TransactionStatus,
)
from settlement.models.types import JSONType, MoneyType, UTCDateTime
from settlement.utils.datetime_utils import utc_now


class Transaction(Base):
    """Transaction model - immutable ledger entry."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index('idx_transaction_user_bucket', 'user_id', 'bucket'),
        Index('idx_transaction_user_created', 'user_id', 'created_at'),
        Index('idx_transaction_type_status', 'type', 'status'),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Ledger data
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    fee: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0")
    )
    balance_before: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(10), nullable=False, default="USDT"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.COMPLETED
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Source links. A deposit is credited at most once.
    deposit_id: Mapped[int | None] = mapped_column(
        ForeignKey("deposits.id", ondelete="SET NULL"),
        nullable=True,
        unique=True
    )
    withdrawal_id: Mapped[int | None] = mapped_column(
        ForeignKey("withdrawals.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    bonus_id: Mapped[int | None] = mapped_column(
        ForeignKey("bonuses.id", ondelete="SET NULL"),
        nullable=True,
        unique=True
    )

    # Reversal bookkeeping
    is_reversed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    related_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    reversed_by_admin_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    reversed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Transaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.type}, bucket={self.bucket}, amount={self.amount})>"
        )

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    @property
    def is_debit(self) -> bool:
        return self.amount < 0

    @property
    def can_be_reversed(self) -> bool:
        """Completed credit of a reversible type that was not reversed yet."""
        return (
            self.type in REVERSIBLE_TRANSACTION_TYPES
            and self.status == TransactionStatus.COMPLETED
            and not self.is_reversed
        )
