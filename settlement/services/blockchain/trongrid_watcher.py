"""
TronGrid chain watcher.

Reads incoming USDT (TRC20) transfers for custodial addresses from the
TronGrid REST API.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import aiohttp
from loguru import logger

from settlement.config.settings import Settings
from settlement.services.blockchain.interfaces import ChainObservation
from settlement.utils.exceptions import ExternalDispatchFailed


class TronGridWatcher:
    """ChainWatcher implementation for TRC20 USDT."""

    def __init__(self, settings: Settings) -> None:
        self.base_url = settings.trongrid_api_url.rstrip("/")
        self.contract = settings.usdt_trc20_contract
        self.api_key = settings.trongrid_api_key
        self.timeout = aiohttp.ClientTimeout(total=settings.chain_timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["TRON-PRO-API-KEY"] = self.api_key
            self._session = aiohttp.ClientSession(
                headers=headers, timeout=self.timeout
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status != 200:
                    raise ExternalDispatchFailed(
                        f"TronGrid HTTP {response.status} for {path}",
                        retryable=response.status >= 500 or response.status == 429,
                    )
                return await response.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ExternalDispatchFailed(
                f"TronGrid request failed: {e}", retryable=True
            ) from e

    async def get_current_block(self) -> int:
        data = await self._request("POST", "/wallet/getnowblock")
        return int(data["block_header"]["raw_data"]["number"])

    async def get_block_number(self, tx_hash: str) -> int | None:
        data = await self._request(
            "POST", "/wallet/gettransactioninfobyid", json={"value": tx_hash}
        )
        number = data.get("blockNumber")
        return int(number) if number is not None else None

    async def get_confirmations(self, tx_hash: str) -> int | None:
        block_number = await self.get_block_number(tx_hash)
        if block_number is None:
            return None
        current = await self.get_current_block()
        return max(0, current - block_number)

    async def observe(self, address: str) -> list[ChainObservation]:
        """
        Incoming USDT transfers to ``address``.

        Args:
            address: Custodial deposit address

        Returns:
            Observations with current confirmation counts
        """
        data = await self._request(
            "GET",
            f"/v1/accounts/{address}/transactions/trc20",
            params={
                "only_to": "true",
                "only_confirmed": "false",
                "contract_address": self.contract,
                "limit": "50",
            },
        )
        transfers = data.get("data", [])
        if not transfers:
            return []

        current = await self.get_current_block()
        observations = []
        for item in transfers:
            if item.get("to") != address:
                continue
            decimals = int(item.get("token_info", {}).get("decimals", 6))
            amount = Decimal(item["value"]).scaleb(-decimals)
            tx_hash = item["transaction_id"]

            block_number = await self.get_block_number(tx_hash)
            confirmations = (
                max(0, current - block_number) if block_number is not None else 0
            )
            block_time = None
            if item.get("block_timestamp"):
                block_time = datetime.fromtimestamp(
                    item["block_timestamp"] / 1000, tz=UTC
                )

            observations.append(ChainObservation(
                tx_hash=tx_hash,
                amount=amount,
                from_address=item.get("from"),
                to_address=address,
                confirmations=confirmations,
                block_number=block_number,
                block_time=block_time,
            ))

        logger.debug(
            f"TronGrid: {len(observations)} transfers observed for {address}"
        )
        return observations
