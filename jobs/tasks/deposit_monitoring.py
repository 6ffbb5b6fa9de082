"""
Deposit monitoring tasks.

Polls watched deposit addresses, refreshes confirmation counts of open
deposits and expires deposits that were never seen on chain.
"""

import asyncio

import dramatiq
from loguru import logger

from jobs.broker import broker  # noqa: F401  actors bind to the Redis broker
from jobs.utils.database import task_session_maker
from jobs.utils.locking import run_exclusive
from jobs.utils.retry import retry_transient
from settlement.config.settings import settings
from settlement.services.blockchain.trongrid_watcher import TronGridWatcher
from settlement.services.deposit.deposit_service import DepositService


@dramatiq.actor(retry_when=retry_transient, time_limit=300_000)  # 5 min timeout
def monitor_deposits() -> None:
    """Scan deposit addresses and advance open deposits."""
    logger.info("Starting deposit monitoring...")

    try:
        result = asyncio.run(
            run_exclusive("deposit_monitoring", _monitor_deposits_async, timeout=330)
        )
        if result is not None:
            logger.info(
                f"Deposit monitoring complete: {result['observed']} observed, "
                f"{result['confirmed']} confirmed"
            )
    except Exception as e:
        logger.exception(f"Deposit monitoring failed: {e}")
        raise


async def _monitor_deposits_async() -> dict:
    watcher = TronGridWatcher(settings)
    try:
        async with task_session_maker() as session:
            service = DepositService(session, settings)
            observed = await service.scan_deposit_addresses(watcher)
            confirmed = await service.refresh_pending(watcher)
            return {"observed": observed, "confirmed": confirmed}
    finally:
        await watcher.close()


@dramatiq.actor(retry_when=retry_transient, time_limit=120_000)
def expire_deposits() -> None:
    """Expire pending deposits past their expiry time."""
    try:
        expired = asyncio.run(
            run_exclusive("deposit_expiry", _expire_deposits_async, timeout=150)
        )
        if expired:
            logger.info(f"Expired {expired} deposits")
    except Exception as e:
        logger.exception(f"Deposit expiry failed: {e}")
        raise


async def _expire_deposits_async() -> int:
    async with task_session_maker() as session:
        return await DepositService(session, settings).expire_stale()
