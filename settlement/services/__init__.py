"""
Services.

Business logic layer of the settlement engine.
"""

from settlement.services.base_service import (
    BaseService,
    ServiceResult,
    log_operation,
    transaction,
)
from settlement.services.events import (
    EngineEvent,
    EventDispatcher,
    EventName,
    default_dispatcher,
)
from settlement.services.settlement_service import SettlementService


__all__ = [
    "BaseService",
    "EngineEvent",
    "EventDispatcher",
    "EventName",
    "ServiceResult",
    "SettlementService",
    "default_dispatcher",
    "log_operation",
    "transaction",
]
