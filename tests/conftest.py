"""
Shared fixtures: in-memory fakes for the provider, reasoning and lookup
collaborators, plus builders for raw provider records.
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from config.settings import Settings
from walletrisk.agents.base import ReasoningReply, ReasoningService
from walletrisk.api_clients.base import ChainDataProvider, LookupService, SearchSnippet
from walletrisk.database.report_store import FileReportStore
from walletrisk.scoring.thresholds import ScoringThresholds
from walletrisk.utils.knowledge_base import KnowledgeBase

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
MIXER = "0x12d66f87a04a9e220743712ce6d9bb1b5616b8fc"
UNISWAP_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
UNKNOWN_CONTRACT = "0x9999999999999999999999999999999999999999"


# ============================================================================
# RAW RECORD BUILDERS
# ============================================================================

def raw_token(symbol: str, balance: str, decimals: int = 18, **extra: Any) -> Dict[str, Any]:
    record = {
        "token_address": f"0x{abs(hash(symbol)) % (16 ** 40):040x}",
        "symbol": symbol,
        "name": f"{symbol} Coin",
        "balance": balance,
        "decimals": decimals,
        "possible_spam": False,
        "verified_contract": False,
    }
    record.update(extra)
    return record


def raw_tx(
    to_address: str,
    value_wei: str = "0",
    input_data: str = "0x",
    from_address: str = WALLET,
    receipt_status: str = "1",
    days_ago: int = 400,
) -> Dict[str, Any]:
    timestamp = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return {
        "hash": f"0x{abs(hash((to_address, value_wei, input_data, days_ago))):064x}"[:66],
        "from_address": from_address,
        "to_address": to_address,
        "value": value_wei,
        "input": input_data,
        "receipt_status": receipt_status,
        "block_timestamp": timestamp.isoformat().replace("+00:00", "Z"),
    }


def native(eth: float) -> Dict[str, Any]:
    return {"balance": str(int(eth * 10 ** 18)), "balance_formatted": eth}


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================

class FakeChainProvider(ChainDataProvider):
    """Serves canned per-chain data; records calls and overlapping runs per address"""

    name = "fake"

    def __init__(
        self,
        chains: Optional[Dict[str, Dict[str, Any]]] = None,
        net_worth: Optional[Dict[str, Any]] = None,
        profit_loss: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
        failing: tuple = (),
    ):
        self.chains = chains or {}
        self.net_worth = net_worth or {"total_networth_usd": "0", "chains": []}
        self.profit_loss = profit_loss or {}
        self.delay = delay
        self.failing = failing
        self.calls: List[tuple] = []
        self.runs_active: Dict[str, int] = {}
        self.max_runs_active: Dict[str, int] = {}

    async def _serve(self, method: str, address: str, chain: str, default: Any) -> Any:
        self.calls.append((method, address, chain))
        if method in self.failing:
            raise RuntimeError(f"{method} unavailable")
        return self.chains.get(chain, {}).get(method, default)

    async def get_token_balances(self, address, chain):
        return await self._serve("tokens", address, chain, [])

    async def get_native_balance(self, address, chain):
        return await self._serve("native", address, chain, {"balance": "0", "balance_formatted": 0.0})

    async def get_defi_positions(self, address, chain):
        return await self._serve("positions", address, chain, [])

    async def get_transactions(self, address, chain, limit=100):
        return await self._serve("transactions", address, chain, [])

    async def get_net_worth(self, address, chains):
        """Called once per analysis run, so its overlap shows whether runs overlap"""
        self.calls.append(("net_worth", address, tuple(chains)))
        self.runs_active[address] = self.runs_active.get(address, 0) + 1
        self.max_runs_active[address] = max(self.max_runs_active.get(address, 0), self.runs_active[address])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.net_worth
        finally:
            self.runs_active[address] -= 1

    async def get_profit_loss(self, address, chains):
        self.calls.append(("profit_loss", address, tuple(chains)))
        if "profit_loss" in self.failing:
            raise RuntimeError("profit_loss unavailable")
        return self.profit_loss

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)


class FakeReasoningService(ReasoningService):
    """Replies through a handler, or pops scripted replies/exceptions in order"""

    def __init__(
        self,
        replies: Optional[List[Any]] = None,
        handler: Optional[Callable[..., ReasoningReply]] = None,
    ):
        self.replies = list(replies or [])
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_context, user_payload, tools=None, history=None):
        self.calls.append(
            {
                "system_context": system_context,
                "user_payload": user_payload,
                "tools": list(tools or []),
                "history": list(history or []),
            }
        )
        if self.handler is not None:
            return self.handler(system_context, user_payload, tools, history)
        if not self.replies:
            raise RuntimeError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeLookup(LookupService):
    """Returns one snippet per query unless told to fail"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.queries: List[str] = []

    async def search(self, query, max_results=5):
        self.queries.append(query)
        if self.fail:
            raise RuntimeError("search backend down")
        return [
            SearchSnippet(title=f"Result for {query}", url="https://example.org/a", snippet="Audited in 2023.")
        ][:max_results]


def json_reply(**payload: Any) -> ReasoningReply:
    return ReasoningReply(text=json.dumps(payload))


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def kb() -> KnowledgeBase:
    return KnowledgeBase.default()


@pytest.fixture
def thresholds() -> ScoringThresholds:
    return ScoringThresholds()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        REPORTS_DIR=str(tmp_path / "wallets"),
        SUPPORTED_CHAINS=["ethereum", "base", "polygon"],
        OPENAI_API_KEY="",
        MORALIS_API_KEY="",
        VALYU_API_KEY="",
        SUPABASE_URL="",
        SUPABASE_KEY="",
        NARRATIVE_ENABLED=False,
        REPORT_MAX_AGE_MINUTES=30,
    )


@pytest.fixture
def file_store(tmp_path) -> FileReportStore:
    return FileReportStore(tmp_path / "wallets")


@pytest.fixture
def scenario_a_chains() -> Dict[str, Dict[str, Any]]:
    """Native ETH plus two stablecoins, nothing else"""
    return {
        "ethereum": {
            "native": native(1.5),
            "tokens": [
                raw_token("USDC", "2500000000", decimals=6, verified_contract=True),
                raw_token("USDT", "1000000000", decimals=6, verified_contract=True),
            ],
        }
    }


@pytest.fixture
def scenario_b_chains() -> Dict[str, Dict[str, Any]]:
    """Three established holdings plus 50 dust scam tokens"""
    scam_tokens = [raw_token(f"MOON{i}", "1000", possible_spam=True) for i in range(50)]
    return {
        "ethereum": {
            "native": native(2.0),
            "tokens": [
                raw_token("USDC", "5000000000", decimals=6, verified_contract=True),
                raw_token("DAI", "750000000000000000000", verified_contract=True),
            ] + scam_tokens,
        }
    }


@pytest.fixture
def scenario_c_chains() -> Dict[str, Dict[str, Any]]:
    """A zero-value transfer into a known mixer"""
    return {
        "ethereum": {
            "native": native(0.5),
            "transactions": [raw_tx(MIXER, value_wei="0", input_data="0xb214faa5")],
        }
    }
