"""
Balance model.

One row per (user, bucket). The amount is mutated only through atomic
conditional updates issued by the ledger repository.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.models.base import Base
from settlement.models.types import MoneyType, UTCDateTime
from settlement.utils.datetime_utils import utc_now


if TYPE_CHECKING:
    from settlement.models.user import User


class Balance(Base):
    """Balance model - per-bucket account balance."""

    __tablename__ = "balances"
    __table_args__ = (
        UniqueConstraint('user_id', 'bucket', name='uq_balance_user_bucket'),
        CheckConstraint('amount >= 0', name='check_balance_non_negative'),
        CheckConstraint(
            "bucket IN ('deposit', 'bonus', 'referral')",
            name='check_balance_bucket'
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0")
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    user: Mapped["User"] = relationship(
        "User",
        back_populates="balances",
        lazy="raise",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Balance(user_id={self.user_id}, bucket={self.bucket}, "
            f"amount={self.amount})>"
        )
