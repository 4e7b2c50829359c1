"""
Moralis API Client
Multi-chain wallet data (balances, ERC-20 tokens, DeFi positions,
transactions, net worth, trading P&L) over the Moralis REST API.
"""
from typing import Any, Dict, List, Optional
import asyncio
import logging

import httpx

from config.settings import Settings
from walletrisk.api_clients.base import ChainDataProvider

logger = logging.getLogger(__name__)

# canonical chain names -> Moralis chain parameter
MORALIS_CHAINS = {
    "ethereum": "eth",
    "base": "base",
    "polygon": "polygon",
    "arbitrum": "arbitrum",
    "optimism": "optimism",
    "bsc": "bsc",
}


class MoralisClient(ChainDataProvider):
    """
    ChainDataProvider backed by Moralis.

    Every call degrades to its empty default on HTTP or decode errors and
    logs a warning; nothing here raises to the pipeline.
    """

    name = "moralis"

    def __init__(
        self,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Moralis client.

        Args:
            api_key: Moralis API key (defaults to MORALIS_API_KEY)
            settings: Settings instance
            http_client: Pre-built client, mainly for tests
        """
        self.settings = settings or Settings()
        self.api_key = api_key or self.settings.MORALIS_API_KEY
        self.enabled = bool(self.api_key) or http_client is not None

        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.settings.MORALIS_BASE_URL,
            headers={"X-API-Key": self.api_key or "", "Accept": "application/json"},
            timeout=self.settings.MORALIS_TIMEOUT,
        )

        if not self.enabled:
            logger.warning("Moralis client initialized without API key - all calls return empty data")

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "MoralisClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @staticmethod
    def _chain_param(chain: str) -> str:
        return MORALIS_CHAINS.get(chain, chain)

    async def _get(self, path: str, params: Any, default: Any) -> Any:
        if not self.enabled:
            return default
        try:
            response = await self.http_client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ Moralis request {path} failed: {e}")
            return default

    async def get_native_balance(self, address: str, chain: str) -> Dict[str, Any]:
        data = await self._get(f"/{address}/balance", {"chain": self._chain_param(chain)}, None)
        if not isinstance(data, dict):
            return {"balance": "0", "balance_formatted": 0.0}
        try:
            formatted = int(data.get("balance", "0")) / 1e18
        except (TypeError, ValueError):
            formatted = 0.0
        return {**data, "balance_formatted": formatted}

    async def get_token_balances(self, address: str, chain: str) -> List[Dict[str, Any]]:
        data = await self._get(
            f"/{address}/erc20",
            {"chain": self._chain_param(chain), "exclude_spam": "false"},
            [],
        )
        if isinstance(data, dict):
            data = data.get("result", [])
        return data if isinstance(data, list) else []

    async def get_transactions(self, address: str, chain: str, limit: int = 100) -> List[Dict[str, Any]]:
        data = await self._get(
            f"/{address}",
            {"chain": self._chain_param(chain), "limit": limit, "order": "DESC"},
            {},
        )
        if isinstance(data, dict):
            data = data.get("result", [])
        return data if isinstance(data, list) else []

    async def get_defi_positions(self, address: str, chain: str) -> List[Dict[str, Any]]:
        data = await self._get(
            f"/wallets/{address}/defi/positions",
            {"chain": self._chain_param(chain)},
            [],
        )
        if isinstance(data, dict):
            data = data.get("result", [])
        return data if isinstance(data, list) else []

    async def get_net_worth(self, address: str, chains: List[str]) -> Dict[str, Any]:
        params = [("chains[]", self._chain_param(chain)) for chain in chains]
        params += [("exclude_spam", "true"), ("exclude_unverified_contracts", "true")]
        data = await self._get(f"/wallets/{address}/net-worth", params, None)
        if not isinstance(data, dict):
            return {"total_networth_usd": "0", "chains": []}
        return data

    async def get_profit_loss(self, address: str, chains: List[str]) -> Dict[str, Any]:
        """One profitability summary per chain; chains that fail are left out"""
        summaries = await asyncio.gather(
            *(
                self._get(
                    f"/wallets/{address}/profitability/summary",
                    {"chain": self._chain_param(chain)},
                    None,
                )
                for chain in chains
            )
        )
        entries = [
            {**summary, "chain": chain}
            for chain, summary in zip(chains, summaries)
            if isinstance(summary, dict)
        ]
        return {"chains": entries} if entries else {}
