"""
Deposit confirmation tracker package.

Modules:
- creator: pending deposits from chain sightings, fraud screening
- confirmer: confirmation counting, single credit, first-deposit follow-up
- monitor: chain watcher polling, confirmation refresh, expiry sweep
- deposit_service: facade
"""

from settlement.services.deposit.confirmer import DepositConfirmer
from settlement.services.deposit.creator import DepositCreator
from settlement.services.deposit.deposit_service import DepositService
from settlement.services.deposit.monitor import DepositMonitor


__all__ = [
    "DepositConfirmer",
    "DepositCreator",
    "DepositMonitor",
    "DepositService",
]
