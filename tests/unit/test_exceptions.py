"""
Unit tests for the settlement error taxonomy.

Tests cover:
- Stable error codes
- Context serialization
- Retry classification and the task retry policy
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from jobs.utils.retry import MAX_TASK_RETRIES, retry_transient
from settlement.utils.exceptions import (
    BalanceInvariantViolation,
    ExternalDispatchFailed,
    FraudRejected,
    InsufficientFunds,
    InvalidAmount,
    NotFound,
    SettlementError,
    is_retryable,
)


class TestErrorCodes:
    """Test that every error carries its code."""

    @pytest.mark.parametrize(
        "exc_type,code",
        [
            (InvalidAmount, "invalid_amount"),
            (InsufficientFunds, "insufficient_funds"),
            (NotFound, "not_found"),
            (BalanceInvariantViolation, "balance_invariant_violation"),
            (FraudRejected, "fraud_rejected"),
            (ExternalDispatchFailed, "external_dispatch_failed"),
        ],
    )
    def test_code(self, exc_type, code):
        exc = exc_type("boom")
        assert exc.code == code
        assert isinstance(exc, SettlementError)
        assert exc.message == "boom"

    def test_insufficient_funds_keeps_amounts(self):
        exc = InsufficientFunds(
            "short", available=Decimal("150"), requested=Decimal("200")
        )
        assert exc.available == Decimal("150")
        assert exc.requested == Decimal("200")

    def test_to_dict_renders_decimals_as_strings(self):
        exc = InsufficientFunds(
            "short", available=Decimal("150"), requested=Decimal("200"), user_id=7
        )
        assert exc.to_dict() == {
            "code": "insufficient_funds",
            "message": "short",
            "context": {"available": "150", "requested": "200", "user_id": 7},
        }

    def test_fraud_rule(self):
        assert FraudRejected("no", rule="user_flagged").rule == "user_flagged"


class TestClassification:
    """Test retry classification."""

    def test_retryable_dispatch_failure(self):
        assert is_retryable(ExternalDispatchFailed("timeout", retryable=True))

    def test_permanent_dispatch_failure(self):
        assert not is_retryable(ExternalDispatchFailed("rejected"))

    def test_database_connection_error(self):
        assert is_retryable(OperationalError("SELECT 1", {}, Exception("gone")))

    def test_business_error_not_retryable(self):
        assert not is_retryable(InsufficientFunds("short"))
        assert not is_retryable(BalanceInvariantViolation("mismatch"))


class TestTaskRetryPolicy:
    """Dramatiq retry predicate."""

    def test_transient_failure_retried_until_limit(self):
        error = OperationalError("SELECT 1", {}, Exception("gone"))

        assert retry_transient(0, error)
        assert retry_transient(MAX_TASK_RETRIES - 1, error)
        assert not retry_transient(MAX_TASK_RETRIES, error)

    def test_business_failure_never_retried(self):
        assert not retry_transient(0, InsufficientFunds("short"))
