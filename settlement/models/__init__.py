"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from settlement.models.audit_event import AuditEvent
from settlement.models.balance import Balance
from settlement.models.base import Base
from settlement.models.bonus import Bonus
from settlement.models.deposit import Deposit
from settlement.models.enums import (
    AuditSeverity,
    BalanceBucket,
    BonusStatus,
    BonusType,
    DepositStatus,
    TransactionStatus,
    TransactionType,
    WithdrawalSource,
    WithdrawalStatus,
)
from settlement.models.transaction import Transaction
from settlement.models.user import User
from settlement.models.withdrawal import Withdrawal
from settlement.models.withdrawal_approval import WithdrawalApproval


__all__ = [
    "AuditEvent",
    "AuditSeverity",
    "Balance",
    "BalanceBucket",
    "Base",
    "Bonus",
    "BonusStatus",
    "BonusType",
    "Deposit",
    "DepositStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
    "Withdrawal",
    "WithdrawalApproval",
    "WithdrawalSource",
    "WithdrawalStatus",
]
