"""
Fraud detection heuristics.

Pure functions over already-loaded rows so they can be unit tested
without a database.
"""

from collections import Counter
from collections.abc import Sequence
from datetime import timedelta
from decimal import Decimal

from settlement.config.business_constants import (
    AUTOMATED_PATTERN_MIN_WITHDRAWALS,
    AUTOMATED_PATTERN_SAME_HOUR_RATIO,
    ROUND_TRIP_AMOUNT_TOLERANCE,
    ROUND_TRIP_WINDOW_HOURS,
    STRUCTURING_AMOUNT_TOLERANCE,
    STRUCTURING_INTERVAL_TOLERANCE,
    STRUCTURING_MIN_DEPOSITS,
    STRUCTURING_REGULAR_INTERVAL_RATIO,
    STRUCTURING_SIMILAR_AMOUNT_RATIO,
    SUSPICIOUS_AMOUNT_TOLERANCE,
    SUSPICIOUS_AMOUNTS,
)
from settlement.models.deposit import Deposit
from settlement.models.withdrawal import Withdrawal


def is_suspicious_amount(amount: Decimal) -> bool:
    """Amount sits just below a watched threshold (9999, 4999, 2999)."""
    for threshold in SUSPICIOUS_AMOUNTS:
        if threshold * (1 - SUSPICIOUS_AMOUNT_TOLERANCE) <= amount <= threshold:
            return True
    return False


def detect_structuring(deposits: Sequence[Deposit]) -> bool:
    """
    Detect a large amount split into similar deposits at regular intervals.

    Args:
        deposits: Deposits ordered by created_at

    Returns:
        True if most amounts are similar and most gaps are regular
    """
    if len(deposits) < STRUCTURING_MIN_DEPOSITS:
        return False

    amounts = [d.amount for d in deposits]
    average = sum(amounts, Decimal("0")) / len(amounts)
    if average <= 0:
        return False
    similar = sum(
        1 for a in amounts
        if abs(a - average) / average < STRUCTURING_AMOUNT_TOLERANCE
    )

    gaps = [
        Decimal(str((b.created_at - a.created_at).total_seconds()))
        for a, b in zip(deposits, deposits[1:])
    ]
    average_gap = sum(gaps, Decimal("0")) / len(gaps)
    if average_gap <= 0:
        # all at the same instant counts as perfectly regular
        regular = len(gaps)
    else:
        regular = sum(
            1 for g in gaps
            if abs(g - average_gap) / average_gap < STRUCTURING_INTERVAL_TOLERANCE
        )

    return (
        similar >= len(amounts) * STRUCTURING_SIMILAR_AMOUNT_RATIO
        and regular >= len(gaps) * STRUCTURING_REGULAR_INTERVAL_RATIO
    )


def detect_round_trip(
    deposits: Sequence[Deposit], withdrawals: Sequence[Withdrawal]
) -> bool:
    """Withdrawal of roughly the deposited amount shortly after the deposit."""
    window = timedelta(hours=ROUND_TRIP_WINDOW_HOURS)
    for deposit in deposits:
        for withdrawal in withdrawals:
            elapsed = withdrawal.created_at - deposit.created_at
            if not timedelta(0) < elapsed < window:
                continue
            difference = abs(deposit.amount - withdrawal.amount)
            if difference / deposit.amount < ROUND_TRIP_AMOUNT_TOLERANCE:
                return True
    return False


def has_automated_pattern(withdrawals: Sequence[Withdrawal]) -> bool:
    """Most withdrawals were requested at the same hour of day."""
    if len(withdrawals) < AUTOMATED_PATTERN_MIN_WITHDRAWALS:
        return False
    hours = Counter(w.created_at.hour for w in withdrawals)
    most_common = hours.most_common(1)[0][1]
    return most_common >= len(withdrawals) * AUTOMATED_PATTERN_SAME_HOUR_RATIO
