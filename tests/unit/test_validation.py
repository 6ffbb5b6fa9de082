"""
Unit tests for input validation.

Tests cover:
- Amount normalization (floats, precision, sign)
- TRC20 and EVM address formats
- Transaction hash format
"""

from decimal import Decimal

import pytest

from settlement.utils.exceptions import InvalidAmount
from settlement.utils.validation import (
    to_amount,
    validate_evm_address,
    validate_payout_address,
    validate_transaction_hash,
    validate_trc20_address,
)


class TestToAmount:
    """Test amount normalization."""

    def test_decimal(self):
        assert to_amount(Decimal("10.5")) == Decimal("10.5")

    def test_string(self):
        assert to_amount("100") == Decimal("100")

    def test_int(self):
        assert to_amount(7) == Decimal("7")

    def test_quantized_to_scale(self):
        assert to_amount("1.1").as_tuple().exponent == -8

    def test_float_refused(self):
        with pytest.raises(InvalidAmount):
            to_amount(10.5)

    def test_too_many_decimals(self):
        with pytest.raises(InvalidAmount):
            to_amount("0.000000001")

    def test_respects_custom_scale(self):
        with pytest.raises(InvalidAmount):
            to_amount("0.001", scale=2)

    @pytest.mark.parametrize("value", ["0", "-1", Decimal("-0.01")])
    def test_not_positive(self, value):
        with pytest.raises(InvalidAmount):
            to_amount(value)

    @pytest.mark.parametrize("value", ["abc", "", "1,5"])
    def test_not_a_number(self, value):
        with pytest.raises(InvalidAmount):
            to_amount(value)

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_not_finite(self, value):
        with pytest.raises(InvalidAmount):
            to_amount(value)

    def test_error_code(self):
        with pytest.raises(InvalidAmount) as exc_info:
            to_amount("-5")
        assert exc_info.value.code == "invalid_amount"


class TestTrc20Address:
    """Test TRON address validation."""

    def test_valid(self):
        assert validate_trc20_address("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t")

    def test_wrong_prefix(self):
        assert not validate_trc20_address("AR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t")

    def test_too_short(self):
        assert not validate_trc20_address("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6")

    @pytest.mark.parametrize("char", ["0", "O", "I", "l"])
    def test_non_base58_character(self, char):
        assert not validate_trc20_address("T" + char * 33)

    def test_empty(self):
        assert not validate_trc20_address("")


class TestEvmAddress:
    """Test ERC20/BEP20 address validation."""

    def test_checksummed(self):
        assert validate_evm_address("0x55d398326f99059fF775485246999027B3197955")

    def test_bad_checksum(self):
        assert not validate_evm_address("0x55D398326f99059fF775485246999027B3197955")

    def test_lowercase_without_checksum(self):
        assert validate_evm_address(
            "0x55d398326f99059ff775485246999027b3197955", checksum=False
        )

    def test_wrong_length(self):
        assert not validate_evm_address("0x1234", checksum=False)


class TestPayoutAddress:
    """Test network dispatch of address validation."""

    def test_trc20(self):
        assert validate_payout_address("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t", "trc20")

    def test_bep20(self):
        assert validate_payout_address(
            "0x55d398326f99059fF775485246999027B3197955", "BEP20"
        )

    def test_cross_network_mismatch(self):
        assert not validate_payout_address(
            "0x55d398326f99059fF775485246999027B3197955", "TRC20"
        )

    def test_unknown_network(self):
        assert not validate_payout_address("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t", "BTC")


class TestTransactionHash:
    """Test transaction hash validation."""

    def test_plain_hex(self):
        assert validate_transaction_hash("a" * 64)

    def test_prefixed(self):
        assert validate_transaction_hash("0x" + "F" * 64)

    def test_too_short(self):
        assert not validate_transaction_hash("a" * 63)

    def test_not_hex(self):
        assert not validate_transaction_hash("g" * 64)
