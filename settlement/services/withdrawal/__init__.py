"""
Withdrawal services package.

This package provides the withdrawal approval workflow:
- withdrawal_helpers: fee arithmetic and source bucket resolution
- withdrawal_request_handler: validation and request creation
- withdrawal_lifecycle_handler: approvals, rejection, cancellation
- withdrawal_dispatch_handler: debit, payout and compensation
- withdrawal_query_service: lookups and history
- withdrawal_service: facade

All components are re-exported for easy importing.
"""

from settlement.services.withdrawal.withdrawal_dispatch_handler import (
    DispatchSummary,
    WithdrawalDispatchHandler,
)
from settlement.services.withdrawal.withdrawal_helpers import (
    calculate_fee,
    plan_debits,
    source_buckets,
)
from settlement.services.withdrawal.withdrawal_lifecycle_handler import (
    ApprovalOutcome,
    WithdrawalLifecycleHandler,
)
from settlement.services.withdrawal.withdrawal_query_service import (
    WithdrawalQueryService,
)
from settlement.services.withdrawal.withdrawal_request_handler import (
    WithdrawalRequestHandler,
)
from settlement.services.withdrawal.withdrawal_service import WithdrawalService


__all__ = [
    "ApprovalOutcome",
    "DispatchSummary",
    "WithdrawalDispatchHandler",
    "WithdrawalLifecycleHandler",
    "WithdrawalQueryService",
    "WithdrawalRequestHandler",
    "WithdrawalService",
    "calculate_fee",
    "plan_debits",
    "source_buckets",
]
