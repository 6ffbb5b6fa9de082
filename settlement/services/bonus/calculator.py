"""
Bonus calculator.

Pure arithmetic for daily profit-share and referral bonuses. All results
are rounded down to the ledger scale, so the sum of shares never exceeds
the pool.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext

from loguru import logger


# Enough digits for 18-digit amounts multiplied together without rounding
_CALC_PRECISION = 60


@dataclass(frozen=True)
class PlannedShare:
    """One recipient's share of a daily pool."""

    user_id: int
    deposit_balance: Decimal
    amount: Decimal


class BonusCalculator:
    """
    Bonus calculator for daily distribution and referral rewards.

    Single source of truth for bonus computations; holds no state besides
    the ledger scale.
    """

    def __init__(self, scale: int = 8) -> None:
        """
        Initialize bonus calculator.

        Args:
            scale: Number of fractional digits kept by the ledger
        """
        self.quantum = Decimal(1).scaleb(-scale)

    def round_down(self, amount: Decimal) -> Decimal:
        return amount.quantize(self.quantum, rounding=ROUND_DOWN)

    def calculate_pool(
        self, profit: Decimal, distribution_percentage: Decimal
    ) -> Decimal:
        """
        Calculate the daily distribution pool.

        Formula: profit * distribution_percentage / 100

        Args:
            profit: Total daily profit
            distribution_percentage: Share distributed (e.g. 70 = 70%)

        Returns:
            Pool amount rounded down to the ledger scale

        Example:
            >>> BonusCalculator().calculate_pool(Decimal("1000"), Decimal("70"))
            Decimal("700.00000000")
        """
        if profit <= 0 or distribution_percentage <= 0:
            return self.round_down(Decimal("0"))

        with localcontext() as ctx:
            ctx.prec = _CALC_PRECISION
            pool = profit * distribution_percentage / 100
        return self.round_down(pool)

    def calculate_share(
        self, pool: Decimal, balance: Decimal, total_balance: Decimal
    ) -> Decimal:
        """
        Calculate one user's share of the pool.

        Formula: pool * balance / total_balance

        Args:
            pool: Distribution pool
            balance: User's deposit balance
            total_balance: Sum of all eligible deposit balances

        Returns:
            Share rounded down to the ledger scale
        """
        if pool <= 0 or balance <= 0 or total_balance <= 0:
            return self.round_down(Decimal("0"))

        if balance > total_balance:
            logger.warning(
                "Balance exceeds total eligible balance",
                extra={"balance": str(balance), "total": str(total_balance)},
            )
            return self.round_down(Decimal("0"))

        with localcontext() as ctx:
            ctx.prec = _CALC_PRECISION
            share = pool * balance / total_balance
        return self.round_down(share)

    def plan_distribution(
        self, pool: Decimal, balances: list[tuple[int, Decimal]]
    ) -> list[PlannedShare]:
        """
        Split a pool proportionally to deposit balances.

        Args:
            pool: Distribution pool
            balances: List of (user_id, deposit_balance)

        Returns:
            One PlannedShare per user with a positive balance; shares may
            be zero when the pool is too small to reach the ledger scale
        """
        eligible = [(uid, bal) for uid, bal in balances if bal > 0]
        total = sum((bal for _, bal in eligible), Decimal("0"))
        return [
            PlannedShare(uid, bal, self.calculate_share(pool, bal, total))
            for uid, bal in eligible
        ]

    def calculate_referral_amount(
        self, deposit_amount: Decimal, percent: Decimal
    ) -> Decimal:
        """
        Calculate a referral reward.

        Formula: deposit_amount * percent / 100

        Example:
            >>> BonusCalculator().calculate_referral_amount(Decimal("500"), Decimal("10"))
            Decimal("50.00000000")
        """
        if deposit_amount <= 0 or percent <= 0:
            return self.round_down(Decimal("0"))

        with localcontext() as ctx:
            ctx.prec = _CALC_PRECISION
            amount = deposit_amount * percent / 100
        return self.round_down(amount)
