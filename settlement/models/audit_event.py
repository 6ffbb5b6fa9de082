"""
Audit event model.

Durable record of fraud decisions, approvals, reversals and invariant
violations. Rows are written in the same unit of work as the change they
describe, except fraud rejections which are committed on their own.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement.models.base import Base
from settlement.models.enums import AuditSeverity
from settlement.models.types import JSONType, UTCDateTime
from settlement.utils.datetime_utils import utc_now


class AuditEvent(Base):
    """Audit trail entry."""

    __tablename__ = "audit_events"
    __table_args__ = (
        Index('idx_audit_event_type_created', 'event_type', 'created_at'),
        Index('idx_audit_event_entity', 'entity_type', 'entity_id'),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AuditSeverity.INFO
    )
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    actor_id: Mapped[int | None] = mapped_column(nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<AuditEvent(id={self.id}, type={self.event_type}, "
            f"user_id={self.user_id}, severity={self.severity})>"
        )
