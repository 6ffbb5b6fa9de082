"""
Bonus engine package.

This package provides the bonus distribution functionality:
- calculator: pool and share arithmetic (rounded down)
- bonus_payer: credit a bonus and mark it distributed
- daily_distributor: resumable daily profit-share run
- referral_processor: multi-level referral rewards on first deposits
- bonus_service: facade used by the engine and jobs
"""

from settlement.services.bonus.bonus_service import BonusService, RetrySummary
from settlement.services.bonus.calculator import BonusCalculator, PlannedShare
from settlement.services.bonus.daily_distributor import (
    DailyBonusDistributor,
    DailyRunSummary,
    FailedRecipient,
)
from settlement.services.bonus.referral_processor import ReferralBonusProcessor


__all__ = [
    "BonusCalculator",
    "BonusService",
    "DailyBonusDistributor",
    "DailyRunSummary",
    "FailedRecipient",
    "PlannedShare",
    "ReferralBonusProcessor",
    "RetrySummary",
]
