"""
Shared fixtures for unit tests.

- Mock database session
- BonusCalculator instance
- Row factories for fraud pattern tests
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from settlement.services.bonus.calculator import BonusCalculator


@pytest.fixture
def mock_session():
    """
    Mock async database session.

    ``info`` is a real dict because services keep their post-commit
    event outbox there.
    """
    session = AsyncMock()
    session.info = {}
    session.add = MagicMock()
    return session


@pytest.fixture
def calculator() -> BonusCalculator:
    return BonusCalculator(scale=8)


@pytest.fixture
def make_deposit(fixed_now):
    """Factory for deposit-like rows spaced ``gap`` apart."""

    def factory(amounts, gap=timedelta(hours=1), start=None):
        start = start or fixed_now
        return [
            SimpleNamespace(
                id=i + 1,
                amount=Decimal(str(a)),
                created_at=start + gap * i,
            )
            for i, a in enumerate(amounts)
        ]

    return factory


@pytest.fixture
def make_withdrawal(fixed_now):
    """Factory for withdrawal-like rows."""

    def factory(amount, created_at=None, to_address="T" + "1" * 33):
        return SimpleNamespace(
            amount=Decimal(str(amount)),
            created_at=created_at or fixed_now,
            to_address=to_address,
        )

    return factory
