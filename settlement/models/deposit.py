"""
Deposit model.

Represents an on-chain transfer into a user's custodial address, from the
first sighting until it is credited (or fails / expires).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement.models.base import Base
from settlement.models.enums import DepositStatus
from settlement.models.types import JSONType, MoneyType, UTCDateTime
from settlement.utils.datetime_utils import utc_now


class Deposit(Base):
    """Deposit model - incoming chain transfers."""

    __tablename__ = "deposits"
    __table_args__ = (
        CheckConstraint(
            'amount > 0', name='check_deposit_amount_positive'
        ),
        CheckConstraint(
            'confirmations >= 0', name='check_deposit_confirmations_non_negative'
        ),
        Index('idx_deposit_status_expires', 'status', 'expires_at'),
        Index('idx_deposit_user_created', 'user_id', 'created_at'),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # User reference
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Blockchain data
    tx_hash: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    from_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    network: Mapped[str] = mapped_column(
        String(20), nullable=False, default="TRC20"
    )
    currency: Mapped[str] = mapped_column(
        String(10), nullable=False, default="USDT"
    )

    # Deposit details
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    confirmations: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    required_confirmations: Mapped[int] = mapped_column(
        Integer, nullable=False, default=19
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DepositStatus.PENDING, index=True
    )
    failure_reason: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )

    # Post-confirmation processing flags
    is_first_deposit: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    bonus_processed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    referral_processed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    extra_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Timestamps
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Deposit(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount}, status={self.status}, "
            f"confirmations={self.confirmations}/{self.required_confirmations})>"
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status == DepositStatus.CONFIRMED

    @property
    def has_enough_confirmations(self) -> bool:
        return self.confirmations >= self.required_confirmations

    @property
    def needs_post_processing(self) -> bool:
        """Confirmed deposit whose bonus/referral side effects are not done."""
        return self.is_confirmed and not (
            self.bonus_processed and self.referral_processed
        )
