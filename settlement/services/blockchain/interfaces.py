"""
Chain collaborator interfaces.

The engine never talks to a node directly. It consumes a transfer feed
(``ChainWatcher.observe``) and hands payouts to a signer
(``PayoutDispatcher.send``), so both can be swapped or faked.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ChainObservation:
    """Incoming transfer seen on chain for a monitored address."""

    tx_hash: str
    amount: Decimal
    from_address: str | None
    to_address: str
    confirmations: int
    block_number: int | None = None
    block_time: datetime | None = None


@dataclass(frozen=True)
class PayoutReceipt:
    """Payout accepted by the signer."""

    tx_hash: str


@runtime_checkable
class ChainWatcher(Protocol):
    async def observe(self, address: str) -> list[ChainObservation]:
        """Return recent incoming transfers to ``address``."""
        ...

    async def get_confirmations(self, tx_hash: str) -> int | None:
        """Current confirmation count of ``tx_hash`` (None if unknown)."""
        ...


@runtime_checkable
class PayoutDispatcher(Protocol):
    async def send(
        self, to_address: str, amount: Decimal, reference: str
    ) -> PayoutReceipt:
        """
        Send ``amount`` to ``to_address``.

        ``reference`` is an idempotency key: sending twice with the same
        reference must not pay twice.

        Raises:
            ExternalDispatchFailed: If the payout was not accepted
        """
        ...
