"""
Blockchain collaborators package.

- interfaces: ChainWatcher and PayoutDispatcher protocols and their data types
- trongrid_watcher: TRC20 transfer feed backed by the TronGrid HTTP API
- payout_client: HTTP client of the external payout signer
"""

from settlement.services.blockchain.interfaces import (
    ChainObservation,
    ChainWatcher,
    PayoutDispatcher,
    PayoutReceipt,
)
from settlement.services.blockchain.payout_client import HttpPayoutDispatcher
from settlement.services.blockchain.trongrid_watcher import TronGridWatcher


__all__ = [
    "ChainObservation",
    "ChainWatcher",
    "HttpPayoutDispatcher",
    "PayoutDispatcher",
    "PayoutReceipt",
    "TronGridWatcher",
]
