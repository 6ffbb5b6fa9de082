"""
Bonus model.

Daily profit shares and referral rewards. ``dedupe_key`` identifies the
logical bonus (user + day, or source deposit + level) so re-running a
computation never produces a second row.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement.models.base import Base
from settlement.models.enums import BonusStatus, BonusType
from settlement.models.types import MoneyType, PercentType, UTCDateTime
from settlement.utils.datetime_utils import utc_now


def daily_dedupe_key(user_id: int, bonus_date: date) -> str:
    return f"daily:{user_id}:{bonus_date.isoformat()}"


def referral_dedupe_key(deposit_id: int, level: int) -> str:
    return f"referral:{deposit_id}:{level}"


class Bonus(Base):
    """Bonus model - daily and referral rewards."""

    __tablename__ = "bonuses"
    __table_args__ = (
        CheckConstraint('amount >= 0', name='check_bonus_amount_non_negative'),
        CheckConstraint(
            'referral_level IS NULL OR referral_level >= 1',
            name='check_bonus_referral_level'
        ),
        Index('idx_bonus_date_status', 'bonus_date', 'status'),
        Index('idx_bonus_batch', 'batch_id'),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    dedupe_key: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True
    )

    # Recipient
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BonusType.DAILY
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BonusStatus.PENDING, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Daily distribution inputs
    bonus_date: Mapped[date] = mapped_column(Date, nullable=False)
    batch_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deposit_balance: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )
    total_deposits: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )
    total_profit: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )
    distribution_pool: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )
    percentage: Mapped[Decimal | None] = mapped_column(
        PercentType, nullable=True
    )

    # Referral inputs
    referral_from_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    referral_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_deposit_id: Mapped[int | None] = mapped_column(
        ForeignKey("deposits.id", ondelete="SET NULL"),
        nullable=True
    )

    # Outcome
    transaction_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    distributed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Bonus(id={self.id}, user_id={self.user_id}, type={self.type}, "
            f"amount={self.amount}, status={self.status})>"
        )
