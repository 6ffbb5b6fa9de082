"""
Status transition tables.

One table per stateful entity. Services never assign ``status`` directly;
they go through ``ensure_transition`` so that an illegal change raises
``InvalidTransition`` instead of corrupting the state machine.
"""

from settlement.models.enums import (
    BonusStatus,
    DepositStatus,
    TransactionStatus,
    WithdrawalStatus,
)
from settlement.utils.exceptions import InvalidTransition


DEPOSIT_TRANSITIONS: dict[str, frozenset[str]] = {
    DepositStatus.PENDING: frozenset({
        DepositStatus.CONFIRMING,
        DepositStatus.FAILED,
        DepositStatus.EXPIRED,
        DepositStatus.CANCELLED,
    }),
    DepositStatus.CONFIRMING: frozenset({
        DepositStatus.CONFIRMED,
        DepositStatus.FAILED,
        DepositStatus.CANCELLED,
    }),
    DepositStatus.CONFIRMED: frozenset(),
    DepositStatus.FAILED: frozenset(),
    DepositStatus.EXPIRED: frozenset(),
    DepositStatus.CANCELLED: frozenset(),
}

WITHDRAWAL_TRANSITIONS: dict[str, frozenset[str]] = {
    WithdrawalStatus.PENDING: frozenset({
        WithdrawalStatus.AWAITING_APPROVAL,
        # zero-quorum withdrawals skip awaiting_approval
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.REJECTED,
        WithdrawalStatus.CANCELLED,
    }),
    WithdrawalStatus.AWAITING_APPROVAL: frozenset({
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.REJECTED,
        WithdrawalStatus.CANCELLED,
    }),
    WithdrawalStatus.APPROVED: frozenset({
        WithdrawalStatus.PROCESSING,
        WithdrawalStatus.FAILED,
    }),
    WithdrawalStatus.PROCESSING: frozenset({
        WithdrawalStatus.COMPLETED,
        WithdrawalStatus.FAILED,
        # retryable dispatch failure, debit already compensated
        WithdrawalStatus.APPROVED,
    }),
    WithdrawalStatus.COMPLETED: frozenset(),
    WithdrawalStatus.REJECTED: frozenset(),
    WithdrawalStatus.FAILED: frozenset(),
    WithdrawalStatus.CANCELLED: frozenset(),
}

BONUS_TRANSITIONS: dict[str, frozenset[str]] = {
    BonusStatus.PENDING: frozenset({
        BonusStatus.CALCULATED,
        BonusStatus.FAILED,
        BonusStatus.CANCELLED,
    }),
    BonusStatus.CALCULATED: frozenset({
        BonusStatus.DISTRIBUTED,
        BonusStatus.FAILED,
        BonusStatus.CANCELLED,
    }),
    # retry sweep
    BonusStatus.FAILED: frozenset({
        BonusStatus.DISTRIBUTED,
        BonusStatus.CANCELLED,
    }),
    BonusStatus.DISTRIBUTED: frozenset(),
    BonusStatus.CANCELLED: frozenset(),
}

TRANSACTION_TRANSITIONS: dict[str, frozenset[str]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    }),
    TransactionStatus.PROCESSING: frozenset({
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
    }),
    TransactionStatus.COMPLETED: frozenset({TransactionStatus.REVERSED}),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
    TransactionStatus.REVERSED: frozenset(),
}

_TABLES = {
    "deposit": DEPOSIT_TRANSITIONS,
    "withdrawal": WITHDRAWAL_TRANSITIONS,
    "bonus": BONUS_TRANSITIONS,
    "transaction": TRANSACTION_TRANSITIONS,
}


def can_transition(entity: str, current: str, target: str) -> bool:
    """Check whether ``entity`` may move from ``current`` to ``target``."""
    return target in _TABLES[entity].get(current, frozenset())


def ensure_transition(entity: str, current: str, target: str) -> None:
    """
    Validate a status change.

    Args:
        entity: One of deposit, withdrawal, bonus, transaction
        current: Current status value
        target: Requested status value

    Raises:
        InvalidTransition: If the table does not allow the change
    """
    if not can_transition(entity, current, target):
        raise InvalidTransition(
            f"Cannot move {entity} from {current} to {target}",
            entity=entity,
            current=str(current),
            target=str(target),
        )


def is_terminal(entity: str, status: str) -> bool:
    return not _TABLES[entity].get(status)
