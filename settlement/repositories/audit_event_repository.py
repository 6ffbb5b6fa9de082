"""
Audit event repository.

Append-only audit trail.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.audit_event import AuditEvent
from settlement.models.enums import AuditSeverity
from settlement.repositories.base import BaseRepository


class AuditEventRepository(BaseRepository[AuditEvent]):
    """Audit event repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize audit event repository."""
        super().__init__(AuditEvent, session)

    async def record(
        self,
        event_type: str,
        message: str | None = None,
        user_id: int | None = None,
        actor_id: int | None = None,
        entity_type: str | None = None,
        entity_id: int | None = None,
        severity: str = AuditSeverity.INFO,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Add an audit event to the current unit of work.

        Args:
            event_type: Dotted event name, e.g. ``fraud.deposit_rejected``
            message: Human-readable summary
            user_id: Affected user
            actor_id: Admin who triggered the event
            entity_type: deposit, withdrawal, transaction, bonus or user
            entity_id: Entity ID
            severity: info, warning or critical
            details: Structured context (amounts as strings)

        Returns:
            The pending AuditEvent
        """
        event = AuditEvent(
            event_type=event_type,
            message=message,
            user_id=user_id,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            severity=str(severity),
            details=details,
        )
        self.session.add(event)
        await self.session.flush()
        return event
