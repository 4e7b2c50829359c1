"""
Classification Knowledge Base
Static, versioned taxonomies used for categorical lookups: stablecoins,
established tokens, trusted-protocol tiers, scam-name patterns and mixer
addresses. Built once and passed by reference into the normalizer and scorers.
"""
from collections import OrderedDict
from typing import Any, Dict, FrozenSet, Literal, Optional, Tuple
import re
import logging

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from walletrisk.models.schemas import InteractionType, ProtocolTier, RiskTier
from walletrisk.utils.symbols import normalize_symbol

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_VERSION = "2.0"

# per-instance memo size for classify() and protocol_tier()
CLASSIFICATION_CACHE_SIZE = 2048

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

STABLECOINS = (
    "USDT", "USDC", "DAI", "BUSD", "FRAX", "TUSD", "USDP", "LUSD", "MIM",
)

ESTABLISHED_TOKENS = (
    "BTC", "ETH", "BNB", "SOL", "ADA", "XRP", "AVAX", "DOT", "MATIC", "LINK",
    "UNI", "AAVE", "CRV", "COMP", "MKR", "SNX", "YFI", "SUSHI", "GRT", "ENS",
    "WETH", "WBTC", "WUSDC", "WUSDT", "WDAI", "LDO", "ARB", "OP", "STETH",
    "RPL", "1INCH", "BAL", "GMX", "DYDX", "INJ", "FTM", "NEAR", "KAVA",
    "NEXO", "ANKR", "CAKE", "ZRX", "BAT", "RUNE", "TWT", "OCEAN", "AGIX",
    "APE", "PEPE", "DOGE", "SHIB", "TIA", "SEI", "JUP", "PYTH", "WTAO", "EIGEN",
    "TRX", "BCH", "XMR", "SAROS", "XCN", "ZBCN", "SYRUP", "LOCK",
    "aEthUNI", "aEthLINK", "aEthAAVE", "aEthDAI", "aEthUSDC", "aEthWBTC", "aEthWETH",
    "cbETH", "cbBTC", "cbUSDC", "rETH", "wstETH", "sDAI", "eUSD", "weETH", "ETHx",
)

SCAM_PATTERNS = (
    "test", "fake", "scam", "moon", "safe", "inu", "elon", "pump", "rug",
    "airdrop", "giveaway", "shiba", "baby", "pepe", "token", "launch", "zero tax",
)

PROTOCOL_TIERS: Dict[str, ProtocolTier] = {
    **{name: "tier1" for name in (
        "aave", "compound", "makerdao", "uniswap", "curve", "lido",
        "ethereum", "weth", "usdc", "usdc_proxy", "usdt", "dai",
    )},
    **{name: "tier2" for name in (
        "sushiswap", "balancer", "convex", "yearn", "synthetix", "1inch", "opensea",
    )},
    **{name: "tier3" for name in (
        "pancakeswap", "quickswap", "spookyswap", "traderjoe", "frax", "bancor",
    )},
}

# Ethereum mainnet contracts, lower-cased
KNOWN_CONTRACTS: Dict[str, Tuple[str, ProtocolTier]] = {
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": ("weth", "tier1"),
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d": ("uniswap_v2_router", "tier1"),
    "0xe592427a0aece92de3edee1f18e0157c05861564": ("uniswap_v3_router", "tier1"),
    "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45": ("uniswap_v3_router_2", "tier1"),
    "0x1111111254eeb25477b68fb85ed929f73a960582": ("1inch_v4", "tier2"),
    "0x1111111254fb6c44bac0bed2854e76f90643097d": ("1inch_v5", "tier2"),
    "0x00000000006c3852cbef3e08e8df289169ede581": ("opensea_seaport", "tier2"),
    "0x00000000000001ad428e4906ae43d8f9852d0dd6": ("opensea_seaport_1_4", "tier2"),
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": ("usdc_proxy", "tier1"),
    "0xdac17f958d2ee523a2206206994597c13d831ec7": ("usdt", "tier1"),
    "0x6b175474e89094c44da98b954eedeac495271d0f": ("dai", "tier1"),
    "0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9": ("aave_v2_lending_pool", "tier1"),
    "0x87870bace4823e47d8fc3b2b0c34029e6ceaebf6": ("aave_v3_pool", "tier1"),
    "0x5f3b5dfeb7b28cdbd7faba78963ee202a494e2a2": ("curve_voting_escrow", "tier1"),
    "0xd533a949740bb3306d119cc777fa900ba034cd52": ("crv_token", "tier1"),
    "0xae7ab96520de3a18e5e111b5eaab095312d7fe84": ("steth", "tier1"),
    "0x5a98fcbea516cf06857215779fd812ca3bef1b32": ("lido_dao", "tier1"),
    "0xba12222222228d8ba445958a75a0704d566bf2c8": ("balancer_v2_vault", "tier1"),
    "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f": ("sushiswap_router", "tier2"),
    "0x19d3364a399d251e894ac732651be8b0e4e85001": ("yearn_vault_dai", "tier2"),
    "0x5dbcf33d8c2e976c6b560249878e6f1491bca25c": ("yearn_vault_yusd", "tier2"),
    "0x3d9819210a31b4961b30ef54be2aed79b9c9cd3b": ("compound_comptroller", "tier1"),
    "0xc00e94cb662c3520282e6f5717214004a7f26888": ("comp_token", "tier1"),
    "0x9f8f72aa9304c8b593d555f12ef6589cc3a579a2": ("mkr_token", "tier1"),
    "0x5ef30b9986345249bc32d8928b7ee64de9435e39": ("maker_cdps", "tier1"),
    "0xc1f981bff38a184c6fcc5d5ea3e7ab62f36c1ce3": ("arbitrum_l1_gateway_router", "tier1"),
    "0x636af16bf2f682dd3109e60102b8e1a089fedaa8": ("optimism_l1_standard_bridge", "tier1"),
    "0x00000000000c2e074ec69a0dfb2997ba6c7d2e1e": ("ens_registry", "tier1"),
    "0x8731d54e9d02c286767d56ac03e8037c07e01e98": ("stargate_router", "tier2"),
    "0x3e4a3a4796d16c0cd582c382691998f7c06420b6": ("hop_bridge", "tier2"),
    "0x881d40237659c251811cec9c364ef91dc08d300c": ("metamask_swap_router", "tier3"),
    "0xd01607c3c5ecaba394d8be377a08590149325722": ("aave_v3_eth_staking", "tier1"),
    "0x4d5f47fa6a74757f35c14fd3a6ef8e3c9bc514e8": ("aave_weth_token", "tier1"),
    "0x4da27a545c0c5b758a6ba100e3a049001de870f5": ("stkaave", "tier1"),
}

MIXER_ADDRESSES = (
    "0x12d66f87a04a9e220743712ce6d9bb1b5616b8fc",
    "0x47ce0c6ed5b0ce3d3a51fdb1c52dc66a7c3c2936",
    "0x910cbd523d972eb0a6f4cae4618ad62622b39dbf",
    "0x8589427373d6d84e98730d7795d8f6f8731fda16",
    "0x722122df12d4e14e13ac3b6895a86e84145b6967",
    "0xdd4c48c0b24039969fc16d1cdf626eab821d3384",
)

# Function selectors recognised without a known target contract
KNOWN_SELECTORS: Dict[str, Tuple[str, InteractionType, RiskTier]] = {
    "0x38ed1739": ("uniswap", "dex_swap", "low"),  # swapExactTokensForTokens
    "0x573ade81": ("aave", "lending", "low"),  # repay
}

NATIVE_SYMBOLS: Dict[str, str] = {
    "ethereum": "ETH",
    "base": "ETH",
    "arbitrum": "ETH",
    "optimism": "ETH",
    "polygon": "MATIC",
    "bsc": "BNB",
}

POOL_KIND_BASE_RISK: Dict[str, int] = {
    "lending": 20,
    "liquidity": 35,
    "staking": 25,
    "farming": 45,
    "other": 50,
}

PROTOCOL_TIER_RISK: Dict[ProtocolTier, int] = {
    "tier1": 15,
    "tier2": 30,
    "tier3": 45,
    "unknown": 70,
}

TIER_TO_RISK: Dict[ProtocolTier, RiskTier] = {
    "tier1": "low",
    "tier2": "low",
    "tier3": "medium",
    "unknown": "high",
}

MIXER_PROTOCOL_NAME = "privacy_mixer"


class Classification(BaseModel):
    """Outcome of a knowledge-base lookup"""
    model_config = ConfigDict(frozen=True)

    tier: RiskTier
    matched_name: Optional[str] = None
    category: Literal[
        "stablecoin", "established", "protocol", "contract", "mixer", "scam_pattern", "unknown"
    ] = "unknown"
    protocol_tier: Optional[ProtocolTier] = None


class KnowledgeBase(BaseModel):
    """Immutable lookup tables with O(1) amortized classification"""
    model_config = ConfigDict(frozen=True)

    version: str = KNOWLEDGE_BASE_VERSION
    stablecoins: FrozenSet[str] = Field(default_factory=frozenset)
    established_tokens: FrozenSet[str] = Field(default_factory=frozenset)
    scam_patterns: Tuple[str, ...] = ()
    protocol_tiers: Dict[str, ProtocolTier] = Field(default_factory=dict)
    known_contracts: Dict[str, Tuple[str, ProtocolTier]] = Field(default_factory=dict)
    mixer_addresses: FrozenSet[str] = Field(default_factory=frozenset)
    known_selectors: Dict[str, Tuple[str, InteractionType, RiskTier]] = Field(default_factory=dict)
    native_symbols: Dict[str, str] = Field(default_factory=dict)
    pool_kind_base_risk: Dict[str, int] = Field(default_factory=dict)
    protocol_tier_risk: Dict[str, int] = Field(default_factory=dict)

    _cache: OrderedDict[str, Classification] = PrivateAttr(default_factory=OrderedDict)
    _protocol_cache: OrderedDict[str, ProtocolTier] = PrivateAttr(default_factory=OrderedDict)
    _trusted_by_length: Tuple[str, ...] = PrivateAttr(default=())

    def model_post_init(self, __context: Any) -> None:
        # longest names first so "usdc_proxy" wins over "usdc"
        self._trusted_by_length = tuple(sorted(self.protocol_tiers, key=len, reverse=True))

    @classmethod
    def default(cls) -> "KnowledgeBase":
        """Build the knowledge base shipped with the package"""
        return cls(
            stablecoins=frozenset(normalize_symbol(s) for s in STABLECOINS),
            established_tokens=frozenset(normalize_symbol(s) for s in ESTABLISHED_TOKENS),
            scam_patterns=tuple(p.lower() for p in SCAM_PATTERNS),
            protocol_tiers=dict(PROTOCOL_TIERS),
            known_contracts={k.lower(): v for k, v in KNOWN_CONTRACTS.items()},
            mixer_addresses=frozenset(a.lower() for a in MIXER_ADDRESSES),
            known_selectors=dict(KNOWN_SELECTORS),
            native_symbols=dict(NATIVE_SYMBOLS),
            pool_kind_base_risk=dict(POOL_KIND_BASE_RISK),
            protocol_tier_risk=dict(PROTOCOL_TIER_RISK),
        )

    # ------------------------------------------------------------------
    # Token lookups
    # ------------------------------------------------------------------

    def is_stablecoin(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self.stablecoins

    def is_established(self, symbol: str) -> bool:
        """Stablecoins count as established"""
        normalized = normalize_symbol(symbol)
        return normalized in self.established_tokens or normalized in self.stablecoins

    def matches_scam_pattern(self, *texts: Optional[str]) -> bool:
        for text in texts:
            if not text:
                continue
            lowered = text.lower()
            if any(pattern in lowered for pattern in self.scam_patterns):
                return True
        return False

    # ------------------------------------------------------------------
    # Protocol / address lookups
    # ------------------------------------------------------------------

    def is_mixer(self, address: Optional[str]) -> bool:
        return bool(address) and address.lower() in self.mixer_addresses

    def known_contract(self, address: Optional[str]) -> Optional[Tuple[str, ProtocolTier]]:
        if not address:
            return None
        return self.known_contracts.get(address.lower())

    def protocol_tier(self, protocol_name: Optional[str]) -> ProtocolTier:
        """Tier by exact name, then by substring of a trusted name"""
        name = (protocol_name or "").strip().lower()
        if not name:
            return "unknown"
        cached = _recall(self._protocol_cache, name)
        if cached is not None:
            return cached

        tier: ProtocolTier = self.protocol_tiers.get(name, "unknown")
        if tier == "unknown":
            for trusted in self._trusted_by_length:
                if trusted in name:
                    tier = self.protocol_tiers[trusted]
                    break
        _remember(self._protocol_cache, name, tier)
        return tier

    def tier_risk(self, tier: ProtocolTier) -> RiskTier:
        return TIER_TO_RISK[tier]

    @staticmethod
    def interaction_type_for(protocol_name: str) -> InteractionType:
        """Map a known protocol/contract name onto an interaction type"""
        name = protocol_name.lower()
        if "uniswap" in name or "1inch" in name:
            return "dex_swap"
        if "aave" in name or "compound" in name:
            return "lending"
        if "opensea" in name:
            return "nft_trade"
        if any(token in name for token in ("weth", "usdc", "usdt", "dai")):
            return "token_interaction"
        return "smart_contract"

    # ------------------------------------------------------------------
    # Generic classification
    # ------------------------------------------------------------------

    def classify(self, symbol_or_address: str) -> Classification:
        """
        Classify a token symbol, protocol name or contract address.

        Args:
            symbol_or_address: Symbol ("USDC"), protocol ("aave v3") or 0x address

        Returns:
            Classification with tier low|medium|high and the matched name, if any
        """
        key = (symbol_or_address or "").strip()
        cached = _recall(self._cache, key)
        if cached is not None:
            return cached
        result = self._classify(key)
        _remember(self._cache, key, result)
        return result

    def _classify(self, key: str) -> Classification:
        if not key:
            return Classification(tier="high")

        if ADDRESS_PATTERN.match(key):
            address = key.lower()
            if address in self.mixer_addresses:
                return Classification(tier="high", matched_name=MIXER_PROTOCOL_NAME, category="mixer")
            contract = self.known_contracts.get(address)
            if contract:
                name, tier = contract
                return Classification(
                    tier=self.tier_risk(tier), matched_name=name, category="contract", protocol_tier=tier
                )
            return Classification(tier="high", protocol_tier="unknown")

        normalized = normalize_symbol(key)
        if normalized in self.stablecoins:
            return Classification(tier="low", matched_name=normalized, category="stablecoin")
        if normalized in self.established_tokens:
            return Classification(tier="low", matched_name=normalized, category="established")

        tier = self.protocol_tier(key)
        if tier != "unknown":
            return Classification(
                tier=self.tier_risk(tier), matched_name=key.lower(), category="protocol", protocol_tier=tier
            )

        if self.matches_scam_pattern(key):
            return Classification(tier="high", category="scam_pattern")

        return Classification(tier="high", protocol_tier="unknown")

    def to_prompt_context(self) -> Dict[str, object]:
        """Compact JSON-friendly view used to seed the reasoning service"""
        tiers: Dict[str, list] = {"tier1": [], "tier2": [], "tier3": []}
        for name, tier in self.protocol_tiers.items():
            tiers[tier].append(name)
        return {
            "version": self.version,
            "stablecoins": sorted(self.stablecoins),
            "established_tokens": sorted(self.established_tokens),
            "scam_patterns": list(self.scam_patterns),
            "protocol_tiers": tiers,
            "pool_kind_base_risk": dict(self.pool_kind_base_risk),
            "protocol_tier_risk": dict(self.protocol_tier_risk),
        }


def _recall(cache: OrderedDict[str, Any], key: str) -> Any:
    value = cache.get(key)
    if value is not None:
        cache.move_to_end(key)
    return value


def _remember(cache: OrderedDict[str, Any], key: str, value: Any) -> None:
    """Insert as most recent, evicting the least recently used entry when full"""
    cache[key] = value
    cache.move_to_end(key)
    while len(cache) > CLASSIFICATION_CACHE_SIZE:
        cache.popitem(last=False)
