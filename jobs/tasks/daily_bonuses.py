"""
Daily bonus task.

Distributes the configured share of the day's profit across eligible
depositors. Safe to re-run for the same date.
"""

import asyncio
from datetime import date
from decimal import Decimal

import dramatiq
from loguru import logger

from jobs.broker import broker  # noqa: F401  actors bind to the Redis broker
from jobs.utils.database import task_session_maker
from jobs.utils.locking import run_exclusive
from jobs.utils.retry import retry_transient
from settlement.config.settings import settings
from settlement.services.bonus.bonus_service import BonusService
from settlement.services.bonus.daily_distributor import DailyRunSummary


@dramatiq.actor(retry_when=retry_transient, time_limit=1_800_000)  # 30 min timeout
def process_daily_bonuses(profit: str, bonus_date: str | None = None) -> None:
    """
    Run the daily distribution.

    Args:
        profit: Day's total profit as a decimal string
        bonus_date: ISO date being distributed (today if omitted)
    """
    day = date.fromisoformat(bonus_date) if bonus_date else None
    logger.info(f"Starting daily bonus distribution, profit={profit}")

    try:
        summary = asyncio.run(
            run_exclusive(
                "daily_bonuses",
                lambda: _process_daily_bonuses_async(Decimal(profit), day),
                timeout=1_900,
            )
        )
    except Exception as e:
        logger.exception(f"Daily bonus distribution failed: {e}")
        raise

    if summary is None:
        return
    logger.info(
        f"Daily bonus batch {summary.batch_id}: distributed {summary.distributed} "
        f"to {summary.recipients} users, retained {summary.retained}, "
        f"{len(summary.failed)} failed",
        extra=summary.to_dict(),
    )


async def _process_daily_bonuses_async(
    profit: Decimal, bonus_date: date | None
) -> DailyRunSummary:
    async with task_session_maker() as session:
        return await BonusService(session, settings).calculate_daily_bonuses(
            profit, bonus_date
        )
