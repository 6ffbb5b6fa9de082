"""
Withdrawal helpers.

Fee arithmetic and source bucket resolution shared by the handlers.
"""

from decimal import ROUND_DOWN, Decimal

from settlement.config.business_constants import MIXED_WITHDRAWAL_BUCKETS
from settlement.models.enums import WithdrawalSource
from settlement.models.withdrawal import Withdrawal
from settlement.utils.exceptions import InvalidAmount


def calculate_fee(
    amount: Decimal, fee_percent: Decimal, scale: int = 8
) -> tuple[Decimal, Decimal]:
    """
    Split a gross amount into fee and net amount.

    The fee is rounded down to the ledger scale, so the user is never
    charged more than the configured percentage.

    Args:
        amount: Gross amount
        fee_percent: Fee in percent (0-100)
        scale: Ledger scale

    Returns:
        Tuple of (fee, net_amount)
    """
    quantum = Decimal(1).scaleb(-scale)
    fee = (amount * fee_percent / Decimal(100)).quantize(quantum, rounding=ROUND_DOWN)
    return fee, amount - fee


def recompute_amounts(withdrawal: Withdrawal, scale: int = 8) -> None:
    """Refresh fee and net amount from the gross amount and fee percent."""
    fee, net = calculate_fee(withdrawal.amount, withdrawal.fee_percent, scale)
    withdrawal.fee = fee
    withdrawal.net_amount = net


def source_buckets(source: str) -> tuple[str, ...]:
    """
    Buckets a withdrawal source draws from, in debit order.

    Raises:
        InvalidAmount: If the source is unknown
    """
    try:
        source = WithdrawalSource(source)
    except ValueError as e:
        raise InvalidAmount(f"Unknown withdrawal source: {source}") from e
    if source == WithdrawalSource.MIXED:
        return MIXED_WITHDRAWAL_BUCKETS
    return (source.value,)


def plan_debits(
    amount: Decimal, buckets: tuple[str, ...], balances: dict[str, Decimal]
) -> list[tuple[str, Decimal]]:
    """
    Spread ``amount`` over ``buckets`` in order.

    Returns:
        List of (bucket, amount) with non-zero amounts. The total is less
        than ``amount`` when the buckets do not cover it.
    """
    remaining = amount
    plan: list[tuple[str, Decimal]] = []
    for bucket in buckets:
        if remaining <= 0:
            break
        take = min(remaining, balances.get(bucket, Decimal("0")))
        if take > 0:
            plan.append((bucket, take))
            remaining -= take
    if remaining > 0 and buckets:
        # Let the ledger report the shortfall on the last bucket
        plan.append((buckets[-1], remaining))
    return plan
