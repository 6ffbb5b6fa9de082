"""
Payout signer client.

Hands approved withdrawals to the external signing service over HTTP.
Keys never live in this process.
"""

from decimal import Decimal

import aiohttp
from loguru import logger

from settlement.config.settings import Settings
from settlement.services.blockchain.interfaces import PayoutReceipt
from settlement.utils.exceptions import ExternalDispatchFailed


class HttpPayoutDispatcher:
    """PayoutDispatcher implementation talking to a signer REST API."""

    def __init__(self, settings: Settings) -> None:
        if not settings.payout_signer_url:
            raise ValueError("PAYOUT_SIGNER_URL is not configured")
        self.url = settings.payout_signer_url.rstrip("/")
        self.token = settings.payout_signer_token
        self.network = settings.deposit_network
        self.currency = settings.deposit_currency
        self.from_address = settings.hot_wallet_address
        self.timeout = aiohttp.ClientTimeout(total=settings.chain_timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._session = aiohttp.ClientSession(
                headers=headers, timeout=self.timeout
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def send(
        self, to_address: str, amount: Decimal, reference: str
    ) -> PayoutReceipt:
        """
        Request a payout.

        Args:
            to_address: Destination address
            amount: Net amount to send
            reference: Withdrawal reference (idempotency key)

        Returns:
            PayoutReceipt with the broadcast transaction hash

        Raises:
            ExternalDispatchFailed: On HTTP errors, timeouts or a rejection
        """
        payload = {
            "reference": reference,
            "to_address": to_address,
            "amount": str(amount),
            "currency": self.currency,
            "network": self.network,
            "from_address": self.from_address,
        }
        session = await self._get_session()
        try:
            async with session.post(f"{self.url}/payouts", json=payload) as response:
                data = await response.json(content_type=None)
                if response.status >= 500 or response.status == 429:
                    raise ExternalDispatchFailed(
                        f"Payout signer unavailable: HTTP {response.status}",
                        retryable=True,
                        reference=reference,
                    )
                if response.status >= 400 or not data or not data.get("tx_hash"):
                    error = (data or {}).get("error", f"HTTP {response.status}")
                    raise ExternalDispatchFailed(
                        f"Payout rejected: {error}",
                        retryable=False,
                        reference=reference,
                    )
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            # Retrying is safe, the signer deduplicates by reference
            raise ExternalDispatchFailed(
                f"Payout signer request failed: {e}",
                retryable=True,
                reference=reference,
            ) from e

        logger.info(
            f"Payout {reference} accepted: {data['tx_hash']}",
            extra={"reference": reference, "amount": str(amount)},
        )
        return PayoutReceipt(tx_hash=data["tx_hash"])
