"""
Withdrawal approval model.

One row per (withdrawal, admin). The unique constraint makes a repeated
approval by the same admin impossible even under concurrent requests.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement.models.base import Base
from settlement.models.types import UTCDateTime
from settlement.utils.datetime_utils import utc_now


class WithdrawalApproval(Base):
    """Admin approval of a withdrawal."""

    __tablename__ = "withdrawal_approvals"
    __table_args__ = (
        UniqueConstraint(
            'withdrawal_id', 'admin_id',
            name='uq_withdrawal_approval_admin'
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    withdrawal_id: Mapped[int] = mapped_column(
        ForeignKey("withdrawals.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    admin_id: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<WithdrawalApproval(withdrawal_id={self.withdrawal_id}, "
            f"admin_id={self.admin_id})>"
        )
