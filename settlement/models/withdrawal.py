"""
Withdrawal model.

Outgoing payout request. Created pending, collects admin approvals and is
dispatched to the payout signer once the quorum is reached.
"""

import secrets
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement.models.base import Base
from settlement.models.enums import WithdrawalStatus
from settlement.models.types import JSONType, MoneyType, PercentType, UTCDateTime
from settlement.utils.datetime_utils import utc_now


def generate_reference_id(now: datetime | None = None) -> str:
    """Build a reference like ``WD20261019A1B2C3D4``."""
    now = now or utc_now()
    return f"WD{now:%Y%m%d}{secrets.token_hex(4).upper()}"


class Withdrawal(Base):
    """Withdrawal model - outgoing payout requests."""

    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint('amount > 0', name='check_withdrawal_amount_positive'),
        CheckConstraint('fee >= 0', name='check_withdrawal_fee_non_negative'),
        Index('idx_withdrawal_user_status', 'user_id', 'status'),
        Index('idx_withdrawal_to_address', 'to_address'),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    reference_id: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, default=generate_reference_id
    )

    # User reference
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Amounts (gross amount is debited, net amount is sent)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    fee: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0")
    )
    fee_percent: Mapped[Decimal] = mapped_column(
        PercentType, nullable=False, default=Decimal("0")
    )
    net_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(10), nullable=False, default="USDT"
    )
    network: Mapped[str] = mapped_column(
        String(20), nullable=False, default="TRC20"
    )
    to_address: Mapped[str] = mapped_column(String(64), nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WithdrawalStatus.PENDING, index=True
    )
    required_approvals: Mapped[int] = mapped_column(
        Integer, nullable=False, default=2
    )
    requires_additional_verification: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    requires_two_factor: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    two_factor_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # Outcome
    tx_hash: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by_admin_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispatch_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    extra_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Withdrawal(id={self.id}, ref={self.reference_id}, "
            f"user_id={self.user_id}, amount={self.amount}, "
            f"status={self.status})>"
        )

    @property
    def can_be_approved(self) -> bool:
        return self.status in (
            WithdrawalStatus.PENDING,
            WithdrawalStatus.AWAITING_APPROVAL,
        )

    @property
    def is_open(self) -> bool:
        """Not yet dispatched and not terminal."""
        return self.status in (
            WithdrawalStatus.PENDING,
            WithdrawalStatus.AWAITING_APPROVAL,
            WithdrawalStatus.APPROVED,
            WithdrawalStatus.PROCESSING,
        )
