"""
Exception handling utilities.

Defines the settlement error taxonomy. Every error carries a stable
machine-readable ``code`` which the facade copies into
``ServiceResult.error_code``.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy.exc import OperationalError
from web3.exceptions import Web3Exception


class SettlementError(Exception):
    """Base class for all settlement errors."""

    code = "settlement_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": {
                k: str(v) if isinstance(v, Decimal) else v
                for k, v in self.context.items()
            },
        }


class InvalidAmount(SettlementError):
    """Amount is non-positive, below a minimum or has too many decimals."""

    code = "invalid_amount"


class InsufficientFunds(SettlementError):
    """Debit would take a balance below zero."""

    code = "insufficient_funds"

    def __init__(
        self,
        message: str,
        available: Decimal = Decimal("0"),
        requested: Decimal = Decimal("0"),
        **context: Any,
    ) -> None:
        super().__init__(message, available=available, requested=requested, **context)
        self.available = available
        self.requested = requested


class InvalidTransition(SettlementError):
    """Status change not allowed by the entity's transition table."""

    code = "invalid_transition"


class DuplicateTransaction(SettlementError):
    """Transaction hash or ledger link already recorded."""

    code = "duplicate_transaction"


class FraudRejected(SettlementError):
    """Fraud gate vetoed the operation."""

    code = "fraud_rejected"

    def __init__(self, message: str, rule: str = "", **context: Any) -> None:
        super().__init__(message, rule=rule, **context)
        self.rule = rule


class ApprovalAlreadyGiven(SettlementError):
    """Admin already approved this withdrawal."""

    code = "approval_already_given"


class QuorumNotReached(SettlementError):
    """Withdrawal does not yet have enough approvals to be dispatched."""

    code = "quorum_not_reached"


class ExternalDispatchFailed(SettlementError):
    """Payout signer or chain watcher failed."""

    code = "external_dispatch_failed"

    def __init__(self, message: str, retryable: bool = False, **context: Any) -> None:
        super().__init__(message, retryable=retryable, **context)
        self.retryable = retryable


class NotFound(SettlementError):
    """Referenced entity does not exist."""

    code = "not_found"


class WithdrawalRestricted(SettlementError):
    """Business rule forbids this withdrawal (lock period, limits, open requests)."""

    code = "withdrawal_restricted"


class BalanceInvariantViolation(SettlementError):
    """
    Stored balance disagrees with the sum of its transactions.

    Fatal for the affected user: processing halts until an operator
    reconciles the ledger.
    """

    code = "balance_invariant_violation"


# Exception categories based on handling strategy

# Retry later - infrastructure failures (job retries handle)
RETRYABLE = (
    OperationalError,  # Database connection errors
    Web3Exception,     # Chain RPC errors
)


def is_retryable(exc: Exception) -> bool:
    """
    Check if exception is a transient failure worth retrying.

    Args:
        exc: Exception to check

    Returns:
        True if the operation can be retried later
    """
    if isinstance(exc, ExternalDispatchFailed):
        return exc.retryable
    return isinstance(exc, RETRYABLE)

