"""
Unit tests for engine settings.

Tests cover:
- Database URL validation
- Threshold consistency
- Production guards
- Derived values
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from settlement.config.settings import Settings


class TestSettingsValidation:
    """Test settings validators."""

    def test_rejects_unknown_database_scheme(self):
        with pytest.raises(ValidationError):
            Settings(environment="test", database_url="mysql://localhost/db")

    def test_accepts_sqlite_for_tests(self):
        settings = Settings(environment="test", database_url="sqlite+aiosqlite://")
        assert settings.database_url == "sqlite+aiosqlite://"

    def test_block_threshold_below_high_risk(self):
        with pytest.raises(ValidationError):
            Settings(environment="test", high_risk_threshold=80, block_threshold=60)

    def test_debug_forbidden_in_production(self):
        with pytest.raises(ValidationError):
            Settings(environment="production", debug=True)

    def test_negative_fee_rejected(self):
        with pytest.raises(ValidationError):
            Settings(environment="test", withdrawal_fee_percent=Decimal("-1"))

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("REQUIRED_APPROVALS", "3")
        monkeypatch.setenv("MINIMUM_DEPOSIT_AMOUNT", "250")
        settings = Settings(environment="test")
        assert settings.required_approvals == 3
        assert settings.minimum_deposit_amount == Decimal("250")


class TestDerivedValues:
    """Test helpers computed from settings."""

    def test_money_quantum(self, settings):
        assert settings.money_quantum == Decimal("0.00000001")

    def test_money_quantum_custom_scale(self):
        assert Settings(environment="test", money_scale=2).money_quantum == Decimal("0.01")

    def test_referral_percent_by_level(self, settings):
        assert settings.referral_percent(1) == Decimal("10")
        assert settings.referral_percent(2) == Decimal("5")
        assert settings.referral_percent(3) == Decimal("0")

    def test_referral_percent_respects_max_levels(self, settings):
        single = settings.model_copy(update={"referral_max_levels": 1})
        assert single.referral_percent(2) == Decimal("0")
