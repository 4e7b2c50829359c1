"""
Pydantic schemas for WALLETSEER
Canonical holdings/positions, sub-analysis results and the persisted wallet report
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional, Dict, Any
from datetime import datetime, timezone
import math


ANALYSIS_VERSION = "2.0"

Chain = Literal["ethereum", "base", "polygon", "arbitrum", "optimism", "bsc"]
RiskTier = Literal["low", "medium", "high"]
ProtocolTier = Literal["tier1", "tier2", "tier3", "unknown"]
InteractionType = Literal[
    "dex_swap", "lending", "nft_trade", "token_interaction", "smart_contract", "defi_position"
]
PositionKind = Literal["lending", "liquidity", "staking", "farming", "other"]
AnalysisKind = Literal["assets", "protocols", "pools"]
ResultSource = Literal["llm", "deterministic-fallback", "deterministic"]
Severity = Literal["low", "medium", "high", "critical"]
RiskLevel = Literal["very-low", "low", "medium", "high", "very-high"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    """Round half up and clamp a score into [low, high]"""
    return int(max(low, min(high, math.floor(value + 0.5))))


# ============================================================================
# PROVIDER PAYLOADS
# ============================================================================

class RawChainPayload(BaseModel):
    """Loosely-typed provider responses for one (address, chain), stored for audit/replay"""
    token_balances: List[Dict[str, Any]] = Field(default_factory=list)
    native_balance: Dict[str, Any] = Field(default_factory=dict)
    defi_positions: List[Dict[str, Any]] = Field(default_factory=list)
    transactions: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator('token_balances', 'defi_positions', 'transactions', mode='before')
    @classmethod
    def coerce_list(cls, v: Any) -> List[Any]:
        if isinstance(v, dict):
            v = v.get("result", [])
        return [item for item in (v or []) if isinstance(item, dict)]

    @field_validator('native_balance', mode='before')
    @classmethod
    def coerce_dict(cls, v: Any) -> Dict[str, Any]:
        return v if isinstance(v, dict) else {}


# ============================================================================
# NORMALIZED CHAIN DATA
# ============================================================================

class Holding(BaseModel):
    """A fungible-token or native-currency balance on one chain"""
    model_config = ConfigDict(frozen=True)

    chain: str = Field(..., description="Chain the balance lives on")
    contract_address: str = Field(..., description="Token contract or 'native'")
    symbol: str
    name: Optional[str] = None
    raw_balance: str = Field(..., description="Integer balance string as reported")
    decimals: int = Field(default=18, ge=0)
    balance: float = Field(..., description="Balance in canonical units")
    kind: Literal["native", "token"] = "token"
    verified: bool = False
    possible_spam: bool = False
    is_established: bool = False
    is_dust: bool = False
    is_likely_airdrop: bool = False

    @field_validator('balance')
    @classmethod
    def balance_positive(cls, v: float) -> float:
        """Zero and non-finite balances never reach scoring"""
        if not math.isfinite(v) or v <= 0:
            raise ValueError(f"Holding balance must be positive and finite, got {v}")
        return v


class TokenLeg(BaseModel):
    """One constituent token of a DeFi position"""
    model_config = ConfigDict(frozen=True)

    symbol: str
    amount: float = 0.0
    usd_value: Optional[float] = None


class Position(BaseModel):
    """A DeFi/protocol position (lending, LP, staking, farming)"""
    model_config = ConfigDict(frozen=True)

    chain: str
    protocol: str = Field(..., description="Lower-cased protocol grouping key")
    protocol_id: Optional[str] = None
    kind: PositionKind = "other"
    legs: List[TokenLeg] = Field(default_factory=list)
    total_usd_value: float = 0.0
    protocol_tier: ProtocolTier = "unknown"

    @field_validator('protocol')
    @classmethod
    def normalize_protocol(cls, v: str) -> str:
        """Grouping by protocol depends on this normalization"""
        normalized = (v or "").strip().lower()
        return normalized or "unknown"


class Interaction(BaseModel):
    """Classification of a wallet -> contract call"""
    model_config = ConfigDict(frozen=True)

    target_address: Optional[str] = None
    protocol: str = Field(..., description="Matched protocol name or raw address")
    interaction_type: InteractionType
    risk_tier: RiskTier
    value_usd: float = 0.0
    is_failed: bool = False
    chain: str = "ethereum"
    tx_hash: Optional[str] = None
    timestamp: Optional[str] = None


class NetWorth(BaseModel):
    """Wallet-level net worth summed across chains"""
    total_usd: float = 0.0
    per_chain: Dict[str, float] = Field(default_factory=dict)


class TradingPnL(BaseModel):
    """Realized trading profit and loss summed across chains"""
    realized_profit_usd: float = 0.0
    bought_volume_usd: float = 0.0
    sold_volume_usd: float = 0.0
    trade_count: int = 0
    per_chain: Dict[str, float] = Field(default_factory=dict)


class RiskIndicators(BaseModel):
    """Binary wallet-level risk flags derived from raw activity"""
    interacted_with_mixers: bool = False
    high_value_transactions: bool = False
    new_wallet: bool = False
    diverse_protocols: bool = False
    mixer_addresses: List[str] = Field(default_factory=list)


class ChainSnapshot(BaseModel):
    """Normalized view of one (address, chain) pair"""
    chain: str
    holdings: List[Holding] = Field(default_factory=list)
    positions: List[Position] = Field(default_factory=list)
    interactions: List[Interaction] = Field(default_factory=list)
    native_balance: float = 0.0
    token_count: int = 0

    @property
    def has_activity(self) -> bool:
        return self.native_balance > 0 or self.token_count > 0


class WalletSnapshot(BaseModel):
    """All normalized chain data for one wallet"""
    address: str
    chains: Dict[str, ChainSnapshot] = Field(default_factory=dict)
    holdings: List[Holding] = Field(default_factory=list)
    positions: List[Position] = Field(default_factory=list)
    interactions: List[Interaction] = Field(default_factory=list)
    net_worth: NetWorth = Field(default_factory=NetWorth)
    profit_loss: TradingPnL = Field(default_factory=TradingPnL)
    risk_indicators: RiskIndicators = Field(default_factory=RiskIndicators)

    @property
    def active_chains(self) -> List[str]:
        """Chains with a nonzero native balance or at least one token"""
        return [name for name, chain in self.chains.items() if chain.has_activity]


# ============================================================================
# SCORING SCHEMAS
# ============================================================================

class ScoreResult(BaseModel):
    """Deterministic scorer output, also the source of fallback narratives"""
    score: int = Field(..., ge=0, le=100)
    factors: List[str] = Field(default_factory=list, description="Ordered by evaluation")
    recommendations: List[str] = Field(default_factory=list)
    narrative: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)
    empty: bool = Field(default=False, description="No-data shortcut was taken")


class SubAnalysisResult(BaseModel):
    """Result of one sub-analysis (assets, protocols or pools)"""
    narrative: str
    risk_score: int = Field(..., ge=0, le=100)
    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    source: ResultSource = "deterministic-fallback"
    processed_at: datetime = Field(default_factory=utcnow)

    @field_validator('risk_score', mode='before')
    @classmethod
    def clamp_risk_score(cls, v: Any) -> int:
        return clamp_score(float(v))


# ============================================================================
# FINAL REPORT SCHEMAS
# ============================================================================

class Alert(BaseModel):
    """A synthesized alert shown with the final report"""
    severity: Severity
    message: str


class MultiChainInfo(BaseModel):
    """Cross-chain activity summary, lists only chains with activity"""
    total_chains_active: int = Field(default=0, ge=0)
    chains_with_activity: List[str] = Field(default_factory=list)
    cross_chain_risks: List[str] = Field(default_factory=list)
    chain_specific_risks: Dict[str, List[str]] = Field(default_factory=dict)


class FinalReport(BaseModel):
    """Overall risk assessment combining the three sub-analyses"""
    overall_risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    confidence_score: int = Field(..., ge=0, le=100)
    summary: str
    key_risks: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list, max_length=10)
    multi_chain_info: Optional[MultiChainInfo] = None
    source: ResultSource = "deterministic-fallback"
    processed_at: datetime = Field(default_factory=utcnow)


class RiskSummary(BaseModel):
    """Presentation hints for a risk level"""
    status: str
    color: str
    description: str
    urgency: Literal["none", "low", "medium", "high", "critical"]


# ============================================================================
# PERSISTED REPORT SCHEMAS
# ============================================================================

class WalletAnalyses(BaseModel):
    """The three sub-analyses, each present once its stage has run"""
    assets: Optional[SubAnalysisResult] = None
    protocols: Optional[SubAnalysisResult] = None
    pools: Optional[SubAnalysisResult] = None

    def available(self) -> Dict[str, SubAnalysisResult]:
        return {
            kind: result
            for kind, result in (
                ("assets", self.assets),
                ("protocols", self.protocols),
                ("pools", self.pools),
            )
            if result is not None
        }


class WalletReport(BaseModel):
    """Aggregate root persisted once per wallet address"""
    address: str
    last_updated: datetime = Field(default_factory=utcnow)
    analysis_version: str = ANALYSIS_VERSION
    raw_data: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    analysis: WalletAnalyses = Field(default_factory=WalletAnalyses)
    final_analysis: Optional[FinalReport] = None
    risk_indicators: Optional[RiskIndicators] = None

    @field_validator('address')
    @classmethod
    def lower_address(cls, v: str) -> str:
        return v.strip().lower()


class AnalysisOutcome(BaseModel):
    """What the orchestrator hands back to callers"""
    address: str
    analysis_complete: bool
    cached: bool = False
    report: WalletReport
    risk_summary: Optional[RiskSummary] = None
    processing_time_ms: int = 0
    data_sources: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class AnalysisStatus(BaseModel):
    """Which pipeline stages have been persisted for an address"""
    exists: bool
    last_updated: Optional[datetime] = None
    analyses_complete: List[str] = Field(default_factory=list)
    final_analysis_complete: bool = False
    stale: bool = True


class StoreStats(BaseModel):
    """Summary of everything in a report store"""
    total_wallets: int = 0
    total_size_mb: float = 0.0
    oldest_analysis: Optional[datetime] = None
    newest_analysis: Optional[datetime] = None
