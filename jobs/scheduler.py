"""
Job scheduler.

Enqueues the periodic settlement jobs on the dramatiq broker. The daily
bonus run is not scheduled here: it needs the day's profit and is sent
by an operator (``process_daily_bonuses.send(profit)``).

Run with ``python -m jobs.scheduler``; workers run with
``dramatiq jobs.broker jobs.tasks.deposit_monitoring ...``.
"""

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from jobs.broker import broker  # noqa: F401  registers the broker
from jobs.health import set_scheduler, start_health_server, stop_health_server
from jobs.tasks.balance_verification import verify_balances
from jobs.tasks.deposit_monitoring import expire_deposits, monitor_deposits
from jobs.tasks.retry_sweep import retry_failed_bonuses
from jobs.tasks.withdrawal_processing import process_approved_withdrawals


def build_scheduler() -> AsyncIOScheduler:
    """Create the scheduler with all periodic jobs."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(monitor_deposits.send, "interval", minutes=1, id="monitor_deposits")
    scheduler.add_job(expire_deposits.send, "interval", minutes=10, id="expire_deposits")
    scheduler.add_job(
        process_approved_withdrawals.send, "interval", minutes=5,
        id="process_approved_withdrawals",
    )
    scheduler.add_job(
        retry_failed_bonuses.send, "interval", hours=1, id="retry_failed_bonuses"
    )
    scheduler.add_job(
        verify_balances.send, "cron", hour=3, minute=0, id="verify_balances"
    )
    return scheduler


async def main() -> None:
    scheduler = build_scheduler()
    scheduler.start()
    set_scheduler(scheduler)
    runner = await start_health_server()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Scheduler started")
    await stop.wait()

    scheduler.shutdown(wait=False)
    await stop_health_server(runner)
    logger.info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
