"""
Unit tests for fraud detection heuristics.

Tests cover:
- Just-below-threshold amounts
- Structuring (similar amounts at regular intervals)
- Round trips (deposit quickly withdrawn)
- Automated withdrawal timing
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from settlement.services.fraud.patterns import (
    detect_round_trip,
    detect_structuring,
    has_automated_pattern,
    is_suspicious_amount,
)


class TestSuspiciousAmount:
    """Test watched thresholds."""

    @pytest.mark.parametrize("amount", ["9999", "9800", "4999", "2900"])
    def test_just_below_threshold(self, amount):
        assert is_suspicious_amount(Decimal(amount))

    @pytest.mark.parametrize("amount", ["10000", "5000", "100", "9000"])
    def test_ordinary_amount(self, amount):
        assert not is_suspicious_amount(Decimal(amount))


class TestStructuring:
    """Test structuring detection."""

    def test_similar_regular_deposits(self, make_deposit):
        deposits = make_deposit([1000, 1010, 990, 1005])
        assert detect_structuring(deposits)

    def test_too_few_deposits(self, make_deposit):
        assert not detect_structuring(make_deposit([1000, 1000]))

    def test_varied_amounts(self, make_deposit):
        deposits = make_deposit([100, 5000, 300, 12000])
        assert not detect_structuring(deposits)

    def test_irregular_intervals(self, make_deposit, fixed_now):
        deposits = make_deposit([1000, 1000, 1000, 1000])
        offsets = [0, 1, 30, 31]
        for deposit, hours in zip(deposits, offsets):
            deposit.created_at = fixed_now + timedelta(hours=hours)
        assert not detect_structuring(deposits)

    def test_simultaneous_deposits(self, make_deposit):
        deposits = make_deposit([500, 500, 500], gap=timedelta(0))
        assert detect_structuring(deposits)


class TestRoundTrip:
    """Test round-trip detection."""

    def test_same_amount_withdrawn_next_hours(
        self, make_deposit, make_withdrawal, fixed_now
    ):
        deposits = make_deposit([1000])
        withdrawals = [make_withdrawal(990, fixed_now + timedelta(hours=3))]
        assert detect_round_trip(deposits, withdrawals)

    def test_outside_window(self, make_deposit, make_withdrawal, fixed_now):
        deposits = make_deposit([1000])
        withdrawals = [make_withdrawal(1000, fixed_now + timedelta(hours=30))]
        assert not detect_round_trip(deposits, withdrawals)

    def test_withdrawal_before_deposit(self, make_deposit, make_withdrawal, fixed_now):
        deposits = make_deposit([1000])
        withdrawals = [make_withdrawal(1000, fixed_now - timedelta(hours=1))]
        assert not detect_round_trip(deposits, withdrawals)

    def test_different_amount(self, make_deposit, make_withdrawal, fixed_now):
        deposits = make_deposit([1000])
        withdrawals = [make_withdrawal(200, fixed_now + timedelta(hours=1))]
        assert not detect_round_trip(deposits, withdrawals)


class TestAutomatedPattern:
    """Test same-hour withdrawal detection."""

    def test_same_hour_every_day(self, make_withdrawal, fixed_now):
        withdrawals = [
            make_withdrawal(100, fixed_now + timedelta(days=i)) for i in range(5)
        ]
        assert has_automated_pattern(withdrawals)

    def test_spread_over_the_day(self, make_withdrawal, fixed_now):
        withdrawals = [
            make_withdrawal(100, fixed_now + timedelta(days=i, hours=i * 3))
            for i in range(5)
        ]
        assert not has_automated_pattern(withdrawals)

    def test_too_few(self, make_withdrawal, fixed_now):
        withdrawals = [make_withdrawal(100, fixed_now) for _ in range(4)]
        assert not has_automated_pattern(withdrawals)
