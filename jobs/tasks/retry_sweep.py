"""
Retry sweep task.

Retries failed bonuses and finishes first-deposit follow-up that did not
complete after a confirmation.
"""

import asyncio

import dramatiq
from loguru import logger

from jobs.broker import broker  # noqa: F401  actors bind to the Redis broker
from jobs.utils.database import task_session_maker
from jobs.utils.locking import run_exclusive
from jobs.utils.retry import retry_transient
from settlement.config.settings import settings
from settlement.services.bonus.bonus_service import BonusService
from settlement.services.deposit.deposit_service import DepositService


@dramatiq.actor(retry_when=retry_transient, time_limit=600_000)  # 10 min timeout
def retry_failed_bonuses(days: int = 7) -> None:
    """
    Retry failed bonuses of the last ``days`` days.

    Args:
        days: Look-back window
    """
    try:
        result = asyncio.run(
            run_exclusive("retry_sweep", lambda: _retry_async(days), timeout=660)
        )
    except Exception as e:
        logger.exception(f"Retry sweep failed: {e}")
        raise

    if result is not None:
        logger.info(
            f"Retry sweep: {result['bonuses_retried']} bonuses retried, "
            f"{result['bonuses_still_failed']} still failing, "
            f"{result['deposits_completed']} deposits post-processed"
        )


async def _retry_async(days: int) -> dict:
    async with task_session_maker() as session:
        deposits_completed = await DepositService(
            session, settings
        ).retry_post_confirmation()
        retry = await BonusService(session, settings).retry_failed_bonuses(days)
        return {
            "deposits_completed": deposits_completed,
            "bonuses_retried": retry.retried,
            "bonuses_still_failed": len(retry.still_failed),
        }
