"""
Model enumerations.

Values are stored as plain strings in the database.
"""

from enum import StrEnum


class BalanceBucket(StrEnum):
    DEPOSIT = "deposit"
    BONUS = "bonus"
    REFERRAL = "referral"


class WithdrawalSource(StrEnum):
    """Bucket (or combination) a withdrawal is drawn from."""

    DEPOSIT = "deposit"
    BONUS = "bonus"
    REFERRAL = "referral"
    MIXED = "mixed"


class TransactionType(StrEnum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    BONUS = "bonus"
    REFERRAL_BONUS = "referral_bonus"
    FEE = "fee"
    ADJUSTMENT = "adjustment"
    REVERSAL = "reversal"


# Transaction types that may be undone by an admin reversal
REVERSIBLE_TRANSACTION_TYPES = frozenset({
    TransactionType.DEPOSIT,
    TransactionType.BONUS,
    TransactionType.REFERRAL_BONUS,
    TransactionType.ADJUSTMENT,
})


class TransactionStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


class DepositStatus(StrEnum):
    PENDING = "pending"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class WithdrawalStatus(StrEnum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BonusType(StrEnum):
    DAILY = "daily"
    REFERRAL = "referral"


class BonusStatus(StrEnum):
    PENDING = "pending"
    CALCULATED = "calculated"
    DISTRIBUTED = "distributed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AuditSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
