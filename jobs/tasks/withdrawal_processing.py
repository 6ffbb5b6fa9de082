"""
Withdrawal processing task.

Dispatches approved withdrawals to the payout signer. Withdrawals that
need no admin approval are approved here by the system account first.
"""

import asyncio

import dramatiq
from loguru import logger

from jobs.broker import broker  # noqa: F401  actors bind to the Redis broker
from jobs.utils.database import task_session_maker
from jobs.utils.locking import run_exclusive
from jobs.utils.retry import retry_transient
from settlement.config.business_constants import SYSTEM_ADMIN_ID
from settlement.config.settings import settings
from settlement.services.blockchain.payout_client import HttpPayoutDispatcher
from settlement.services.withdrawal.withdrawal_service import WithdrawalService
from settlement.utils.exceptions import SettlementError


@dramatiq.actor(retry_when=retry_transient, time_limit=300_000)  # 5 min timeout
def process_approved_withdrawals(limit: int = 50) -> None:
    """
    Dispatch up to ``limit`` approved withdrawals.

    Args:
        limit: Batch size
    """
    if not settings.payout_signer_url:
        logger.warning("Payout signer is not configured, skipping dispatch")
        return

    try:
        result = asyncio.run(
            run_exclusive(
                "withdrawal_processing",
                lambda: _process_async(limit),
                timeout=330,
            )
        )
    except Exception as e:
        logger.exception(f"Withdrawal processing failed: {e}")
        raise

    if result is not None:
        logger.info(
            f"Withdrawal processing: {len(result.completed)} completed, "
            f"{len(result.failed)} failed, {len(result.retry_later)} to retry"
        )


async def _approve_zero_quorum(service: WithdrawalService, limit: int) -> None:
    pending = await service.get_pending_approval(limit)
    ids = [w.id for w in pending if w.required_approvals == 0]
    for withdrawal_id in ids:
        try:
            await service.approve_withdrawal(
                withdrawal_id, SYSTEM_ADMIN_ID, note="no approval required"
            )
        except SettlementError as e:
            logger.warning(
                f"Auto-approval of withdrawal {withdrawal_id} failed: {e}",
                extra={"withdrawal_id": withdrawal_id, "code": e.code},
            )


async def _process_async(limit: int):
    dispatcher = HttpPayoutDispatcher(settings)
    try:
        async with task_session_maker() as session:
            service = WithdrawalService(session, settings)
            await _approve_zero_quorum(service, limit)
            return await service.process_approved(dispatcher, limit)
    finally:
        await dispatcher.close()
