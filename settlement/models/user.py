"""
User model.

Account holder of the custodial ledger. Authentication lives outside the
engine; this row only carries what settlement needs.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.models.base import Base
from settlement.models.types import UTCDateTime
from settlement.utils.datetime_utils import utc_now


if TYPE_CHECKING:
    from settlement.models.balance import Balance


class User(Base):
    """User model - ledger account holder."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            'risk_score >= 0 AND risk_score <= 100',
            name='check_user_risk_score_range'
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    username: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Referral chain (level 1 = referrer, level 2 = referrer's referrer)
    referrer_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Address the chain watcher monitors for incoming deposits
    deposit_address: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )

    # Status flags
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    is_flagged: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, index=True
    )
    flagged_reason: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    # Set when a balance invariant violation is detected; blocks all mutations
    ledger_frozen: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    risk_score: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    # First deposit / lock period
    first_deposit_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    deposit_unlock_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    referrer: Mapped["User | None"] = relationship(
        "User",
        remote_side="User.id",
        lazy="raise",
    )
    balances: Mapped[list["Balance"]] = relationship(
        "Balance",
        back_populates="user",
        lazy="raise",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<User(id={self.id}, referrer_id={self.referrer_id}, "
            f"flagged={self.is_flagged}, risk_score={self.risk_score})>"
        )

    def is_deposit_unlocked(self, now: datetime) -> bool:
        """Check whether the deposit bucket lock period is over."""
        return self.deposit_unlock_at is not None and now >= self.deposit_unlock_at
