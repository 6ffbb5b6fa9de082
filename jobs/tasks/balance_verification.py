"""
Balance verification task.

Checks every user's stored balances against the transaction log. A
mismatch freezes the user's ledger and raises an operator alert; nothing
is corrected automatically.
"""

import asyncio

import dramatiq
from loguru import logger
from sqlalchemy import select

from jobs.broker import broker  # noqa: F401  actors bind to the Redis broker
from jobs.utils.database import task_session_maker
from jobs.utils.locking import run_exclusive
from settlement.config.settings import settings
from settlement.models.user import User
from settlement.services.ledger.ledger_service import LedgerService
from settlement.utils.exceptions import BalanceInvariantViolation


@dramatiq.actor(max_retries=1, time_limit=1_800_000)  # 30 min timeout
def verify_balances() -> None:
    """Verify the balance invariant for all users."""
    try:
        violations = asyncio.run(
            run_exclusive("balance_verification", _verify_async, timeout=1_900)
        )
    except Exception as e:
        logger.exception(f"Balance verification failed: {e}")
        raise

    if violations:
        logger.critical(
            f"Balance verification found {len(violations)} violations",
            extra={"user_ids": violations},
        )
    elif violations is not None:
        logger.info("Balance verification complete, no violations")


async def _verify_async() -> list[int]:
    violations: list[int] = []
    async with task_session_maker() as session:
        result = await session.execute(
            select(User.id).where(User.ledger_frozen.is_(False)).order_by(User.id)
        )
        user_ids = list(result.scalars().all())
        await session.commit()

        ledger = LedgerService(session, settings)
        for user_id in user_ids:
            try:
                await ledger.verify_user_balances(user_id)
            except BalanceInvariantViolation:
                violations.append(user_id)
            await session.rollback()
    return violations
