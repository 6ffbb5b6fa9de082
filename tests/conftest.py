"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Minimal environment so that module-level settings load without a .env
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FILE", "")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from settlement.config.settings import Settings


@pytest.fixture
def settings() -> Settings:
    """
    Engine settings used by the tests.

    Defaults mirror production except for the environment; individual
    tests copy and override fields with ``model_copy(update=...)``.
    """
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite://",
        log_file="",
        minimum_deposit_amount=Decimal("100"),
        required_confirmations=19,
        minimum_withdrawal_amount=Decimal("10"),
        required_approvals=2,
        withdrawal_fee_percent=Decimal("0"),
        distribution_percentage=Decimal("70"),
        referral_level_1_percent=Decimal("10"),
        referral_level_2_percent=Decimal("5"),
    )


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
