"""
Collaborator interfaces consumed by the risk pipeline.
Implementations must return empty/zero defaults instead of raising on
provider errors.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import BaseModel


class ChainDataProvider(ABC):
    """Per-(address, chain) wallet data source returning raw provider DTOs"""

    name: str = "provider"

    @abstractmethod
    async def get_token_balances(self, address: str, chain: str) -> List[Dict[str, Any]]:
        """ERC-20 balances; [] on error"""

    @abstractmethod
    async def get_native_balance(self, address: str, chain: str) -> Dict[str, Any]:
        """{"balance": wei string, "balance_formatted": float}; zero balance on error"""

    @abstractmethod
    async def get_defi_positions(self, address: str, chain: str) -> List[Dict[str, Any]]:
        """DeFi positions; [] on error"""

    @abstractmethod
    async def get_transactions(self, address: str, chain: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent transactions first; [] on error"""

    @abstractmethod
    async def get_net_worth(self, address: str, chains: List[str]) -> Dict[str, Any]:
        """{"total_networth_usd": ..., "chains": [...]}; zero net worth on error"""

    async def get_profit_loss(self, address: str, chains: List[str]) -> Dict[str, Any]:
        """Realized trading P&L summary, {"chains": [...]}; {} when unsupported or on error"""
        return {}


class SearchSnippet(BaseModel):
    """One web search hit"""
    title: str = ""
    url: str = ""
    snippet: str = ""
    published_date: str = ""


class LookupService(ABC):
    """External research capability used for unknown protocols and tokens"""

    @abstractmethod
    async def search(self, query: str, max_results: int = 5) -> List[SearchSnippet]:
        """Return snippets for the query; [] on error"""
