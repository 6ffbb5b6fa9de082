"""
Unit tests for withdrawal helpers.

Tests cover:
- Fee / net amount split
- Source bucket resolution
- Debit planning across buckets
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from settlement.services.withdrawal.withdrawal_helpers import (
    calculate_fee,
    plan_debits,
    recompute_amounts,
    source_buckets,
)
from settlement.utils.exceptions import InvalidAmount


class TestCalculateFee:
    """Test fee arithmetic."""

    def test_no_fee(self):
        assert calculate_fee(Decimal("100"), Decimal("0")) == (Decimal("0"), Decimal("100"))

    def test_two_percent(self):
        fee, net = calculate_fee(Decimal("100"), Decimal("2"))
        assert fee == Decimal("2")
        assert net == Decimal("98")

    def test_fee_rounded_down(self):
        """Test the user is never charged more than the percentage."""
        fee, net = calculate_fee(Decimal("0.00000033"), Decimal("10"))
        assert fee == Decimal("0.00000003")
        assert fee + net == Decimal("0.00000033")

    def test_fee_plus_net_is_gross(self):
        amount = Decimal("123.45678901")
        fee, net = calculate_fee(amount, Decimal("1.5"))
        assert fee + net == amount

    def test_recompute_amounts(self):
        withdrawal = SimpleNamespace(
            amount=Decimal("250"), fee_percent=Decimal("2"), fee=None, net_amount=None
        )
        recompute_amounts(withdrawal)
        assert withdrawal.fee == Decimal("5")
        assert withdrawal.net_amount == Decimal("245")


class TestSourceBuckets:
    """Test source resolution."""

    @pytest.mark.parametrize("source", ["deposit", "bonus", "referral"])
    def test_single_bucket(self, source):
        assert source_buckets(source) == (source,)

    def test_mixed_draws_bonus_then_referral(self):
        assert source_buckets("mixed") == ("bonus", "referral")

    def test_unknown(self):
        with pytest.raises(InvalidAmount):
            source_buckets("savings")


class TestPlanDebits:
    """Test spreading a withdrawal over buckets."""

    def test_single_bucket_covered(self):
        plan = plan_debits(
            Decimal("60"), ("bonus",), {"bonus": Decimal("100")}
        )
        assert plan == [("bonus", Decimal("60"))]

    def test_mixed_spills_into_referral(self):
        plan = plan_debits(
            Decimal("120"),
            ("bonus", "referral"),
            {"bonus": Decimal("100"), "referral": Decimal("50")},
        )
        assert plan == [("bonus", Decimal("100")), ("referral", Decimal("20"))]

    def test_mixed_skips_empty_bucket(self):
        plan = plan_debits(
            Decimal("30"),
            ("bonus", "referral"),
            {"bonus": Decimal("0"), "referral": Decimal("50")},
        )
        assert plan == [("referral", Decimal("30"))]

    def test_shortfall_lands_on_last_bucket(self):
        """Test the uncovered remainder is left for the ledger to refuse."""
        plan = plan_debits(
            Decimal("200"),
            ("bonus", "referral"),
            {"bonus": Decimal("100"), "referral": Decimal("50")},
        )
        assert plan == [
            ("bonus", Decimal("100")),
            ("referral", Decimal("50")),
            ("referral", Decimal("50")),
        ]

    def test_missing_bucket_counts_as_zero(self):
        plan = plan_debits(Decimal("10"), ("bonus",), {})
        assert plan == [("bonus", Decimal("10"))]
