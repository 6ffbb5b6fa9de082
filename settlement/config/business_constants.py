"""
Business logic constants for the settlement engine.

Central location for rules that are not worth exposing as settings.
This module can be imported by models, services and jobs without circular
dependencies.
"""

from decimal import Decimal


# Balance buckets a user holds (one Balance row per user and bucket)
BALANCE_BUCKETS = ("deposit", "bonus", "referral")

# Buckets a "mixed" withdrawal draws from, in order
MIXED_WITHDRAWAL_BUCKETS = ("bonus", "referral")

# Deposit amounts that are watched for structuring (just-below-threshold)
SUSPICIOUS_AMOUNTS = (Decimal("9999"), Decimal("4999"), Decimal("2999"))
SUSPICIOUS_AMOUNT_TOLERANCE = Decimal("0.05")  # within 5% below the amount

# Risk score added per detected pattern (score is capped at 100)
DEPOSIT_PATTERN_WEIGHT = 15
WITHDRAWAL_PATTERN_WEIGHT = 20
MAX_RISK_SCORE = 100

# Non-blocking withdrawal signals and their risk weight
WITHDRAWAL_SIGNAL_WEIGHTS = {
    "shared_withdrawal_address": 20,
    "quick_withdrawal_after_deposit": 10,
    "automated_withdrawal_pattern": 20,
    "withdrawal_to_new_address": 5,
}

# Automated pattern: share of withdrawals made in the same hour of day
AUTOMATED_PATTERN_MIN_WITHDRAWALS = 5
AUTOMATED_PATTERN_SAME_HOUR_RATIO = Decimal("0.6")

# Structuring: similar amounts at regular intervals
STRUCTURING_MIN_DEPOSITS = 3
STRUCTURING_AMOUNT_TOLERANCE = Decimal("0.1")
STRUCTURING_INTERVAL_TOLERANCE = Decimal("0.2")
STRUCTURING_SIMILAR_AMOUNT_RATIO = Decimal("0.7")
STRUCTURING_REGULAR_INTERVAL_RATIO = Decimal("0.6")

# Round trip: withdrawal of a similar amount within a day of a deposit
ROUND_TRIP_WINDOW_HOURS = 24
ROUND_TRIP_AMOUNT_TOLERANCE = Decimal("0.05")
ROUND_TRIP_LOOKBACK_DAYS = 7

# Lookback window for user evaluation
RISK_LOOKBACK_DAYS = 30

# System admin id used when a job approves zero-quorum withdrawals
SYSTEM_ADMIN_ID = 0

# Failure reasons recorded on deposits / withdrawals / bonuses
REASON_BELOW_MINIMUM = "below_minimum"
REASON_EXPIRED = "expired"
REASON_INSUFFICIENT_FUNDS = "insufficient_funds"
REASON_DISPATCH_FAILED = "dispatch_failed"
