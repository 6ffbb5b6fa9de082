"""
Engine event dispatch.

Post-commit notifications for collaborators (notification sink, admin
monitor, metrics). Subscribers are fire-and-forget: their failures are
logged and never propagate into the ledger operation that emitted them.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from loguru import logger

from settlement.utils.datetime_utils import utc_now


class EventName(StrEnum):
    """Events published by the engine."""

    DEPOSIT_CREATED = "deposit.created"
    DEPOSIT_CONFIRMED = "deposit.confirmed"
    DEPOSIT_EXPIRED = "deposit.expired"
    DEPOSIT_REJECTED = "deposit.rejected"

    WITHDRAWAL_CREATED = "withdrawal.created"
    WITHDRAWAL_APPROVAL_ADDED = "withdrawal.approval_added"
    WITHDRAWAL_APPROVED = "withdrawal.approved"
    WITHDRAWAL_REJECTED = "withdrawal.rejected"
    WITHDRAWAL_CANCELLED = "withdrawal.cancelled"
    WITHDRAWAL_COMPLETED = "withdrawal.completed"
    WITHDRAWAL_FAILED = "withdrawal.failed"

    BONUS_DISTRIBUTED = "bonus.distributed"
    BONUS_FAILED = "bonus.failed"
    REFERRAL_BONUS_CREDITED = "referral.bonus_credited"

    FRAUD_USER_FLAGGED = "fraud.user_flagged"
    LEDGER_INVARIANT_VIOLATION = "ledger.invariant_violation"


@dataclass
class EngineEvent:
    """Event payload. Amounts are carried as strings."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)


EventHandler = Callable[[EngineEvent], Awaitable[None]]


class EventDispatcher:
    """In-process publish/subscribe hub."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._wildcard: list[EventHandler] = []

    def subscribe(self, name: str, handler: EventHandler) -> None:
        """
        Register a handler.

        Args:
            name: Event name, or "*" for every event
            handler: Async callable receiving the EngineEvent
        """
        if name == "*":
            self._wildcard.append(handler)
        else:
            self._handlers[name].append(handler)

    async def publish(self, event: EngineEvent) -> None:
        """Deliver an event to all subscribers."""
        for handler in [*self._handlers.get(event.name, ()), *self._wildcard]:
            try:
                await handler(event)
            except Exception as e:
                logger.warning(
                    f"Event handler failed for {event.name}: {e}",
                    extra={"event": event.name, "error": str(e)},
                    exc_info=True,
                )


# Process-wide dispatcher used when services are not given one explicitly
default_dispatcher = EventDispatcher()
