"""
Chain Data Normalizer
Turns raw per-chain provider payloads into canonical Holding / Position /
Interaction models. This is the only module that knows provider field names;
every "try field A, else field B, else default" lives in the accessors below.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional
import logging
import math

from pydantic import TypeAdapter, ValidationError

from walletrisk.models.schemas import (
    ChainSnapshot,
    Holding,
    Interaction,
    NetWorth,
    Position,
    PositionKind,
    RawChainPayload,
    RiskIndicators,
    TokenLeg,
    TradingPnL,
    WalletSnapshot,
)
from walletrisk.scoring.thresholds import ScoringThresholds
from walletrisk.utils.knowledge_base import MIXER_PROTOCOL_NAME, KnowledgeBase

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18
TIMESTAMP_ADAPTER = TypeAdapter(datetime)

# provider chain ids -> canonical chain names
CHAIN_ALIASES = {
    "eth": "ethereum",
    "0x1": "ethereum",
    "mainnet": "ethereum",
    "0x2105": "base",
    "matic": "polygon",
    "0x89": "polygon",
    "arbitrum": "arbitrum",
    "0xa4b1": "arbitrum",
    "optimism": "optimism",
    "0xa": "optimism",
    "bsc": "bsc",
    "0x38": "bsc",
}


# ============================================================================
# FIELD ACCESSORS
# ============================================================================

def first_field(record: Any, *keys: str, default: Any = None) -> Any:
    """Return the first present, non-empty value among keys"""
    if not isinstance(record, dict):
        return default
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return default


def as_decimal(value: Any, default: Decimal = Decimal(0)) -> Decimal:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    return parsed if parsed.is_finite() else default


def as_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if math.isfinite(parsed) else default


def as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 timestamps (with or without trailing Z) as UTC"""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = TIMESTAMP_ADAPTER.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def canonical_chain(value: Any) -> Optional[str]:
    if not value:
        return None
    key = str(value).strip().lower()
    return CHAIN_ALIASES.get(key, key)


class ChainDataNormalizer:
    """
    Normalizes provider payloads for one wallet.

    Any malformed record is skipped with a logged warning; a whole section
    that fails degrades to an empty result instead of aborting the run.
    """

    def __init__(
        self,
        knowledge_base: Optional[KnowledgeBase] = None,
        thresholds: Optional[ScoringThresholds] = None,
    ):
        self.knowledge_base = knowledge_base or KnowledgeBase.default()
        self.thresholds = thresholds or ScoringThresholds()
        self.logger = logging.getLogger(self.__class__.__name__)

    # ========================================================================
    # HOLDINGS
    # ========================================================================

    def normalize_native(self, chain: str, raw_native: Dict[str, Any]) -> Optional[Holding]:
        """Inject the chain's native currency as a synthetic holding"""
        raw_wei = first_field(raw_native, "balance", "balance_wei")
        formatted = first_field(raw_native, "balance_formatted", "formatted")
        if formatted is not None:
            balance = as_decimal(formatted)
        else:
            balance = as_decimal(raw_wei) / WEI_PER_ETH
        if balance <= 0:
            return None

        if raw_wei is None:
            raw_wei = str(int(balance * WEI_PER_ETH))

        return Holding(
            chain=chain,
            contract_address="native",
            symbol=self.knowledge_base.native_symbols.get(chain, "ETH"),
            name=f"{chain} native currency",
            raw_balance=str(raw_wei),
            decimals=18,
            balance=float(balance),
            kind="native",
            verified=True,
            possible_spam=False,
            is_established=True,
            is_dust=False,
            is_likely_airdrop=False,
        )

    def normalize_tokens(
        self, chain: str, raw_tokens: Iterable[Dict[str, Any]], now: Optional[datetime] = None
    ) -> List[Holding]:
        """Convert ERC-20 balances, dropping zero balances and symbol-less tokens"""
        now = now or datetime.now(timezone.utc)
        holdings: List[Holding] = []

        for raw in raw_tokens or []:
            symbol = first_field(raw, "symbol", "token_symbol")
            if not symbol or not str(symbol).strip():
                continue

            try:
                raw_balance = as_decimal(first_field(raw, "balance", "raw_balance"))
                if raw_balance <= 0:
                    continue
                decimals = as_int(first_field(raw, "decimals", "token_decimals", default=18), 18)
                balance = raw_balance / (Decimal(10) ** decimals)
                if balance <= 0 or not math.isfinite(float(balance)):
                    continue

                name = first_field(raw, "name", "token_name")
                possible_spam = bool(first_field(raw, "possible_spam", default=False))
                is_dust = balance < Decimal(str(self.thresholds.dust_threshold))

                holdings.append(
                    Holding(
                        chain=chain,
                        contract_address=str(first_field(raw, "token_address", "contract_address", default="")).lower(),
                        symbol=str(symbol),
                        name=name,
                        raw_balance=str(first_field(raw, "balance", "raw_balance")),
                        decimals=decimals,
                        balance=float(balance),
                        kind="token",
                        verified=bool(first_field(raw, "verified_contract", "verified", default=False)),
                        possible_spam=possible_spam,
                        is_established=self.knowledge_base.is_established(str(symbol)),
                        is_dust=is_dust,
                        is_likely_airdrop=self._is_likely_airdrop(raw, str(symbol), name, possible_spam, is_dust, now),
                    )
                )
            except (ValidationError, ValueError, TypeError, ArithmeticError) as e:
                self.logger.warning(f"Skipping malformed token on {chain}: {type(e).__name__}: {e}")

        return holdings

    def _is_likely_airdrop(
        self,
        raw: Dict[str, Any],
        symbol: str,
        name: Optional[str],
        possible_spam: bool,
        is_dust: bool,
        now: datetime,
    ) -> bool:
        if self.knowledge_base.matches_scam_pattern(symbol, name) or possible_spam:
            return True
        created = parse_timestamp(first_field(raw, "created_at", "first_seen"))
        recent = created is not None and created > now - timedelta(days=self.thresholds.recent_token_days)
        return recent and is_dust

    @staticmethod
    def sort_holdings(holdings: List[Holding]) -> List[Holding]:
        """native > established > verified > others, then by symbol"""
        def priority(holding: Holding) -> int:
            if holding.kind == "native":
                return 0
            if holding.is_established:
                return 1
            if holding.verified:
                return 2
            return 3

        return sorted(holdings, key=lambda h: (priority(h), h.symbol.lower()))

    # ========================================================================
    # POSITIONS
    # ========================================================================

    def normalize_positions(self, chain: str, raw_positions: Iterable[Dict[str, Any]]) -> List[Position]:
        positions: List[Position] = []
        for raw in raw_positions or []:
            detail = raw.get("position") if isinstance(raw.get("position"), dict) else {}
            protocol = first_field(raw, "protocol_name", "protocol_id", default="unknown")
            label = first_field(raw, "position_type", default=None) or first_field(detail, "label", default="")
            total = first_field(raw, "total_usd_value", default=None)
            if total is None:
                total = first_field(detail, "balance_usd", "total_usd_value", default=0)

            try:
                positions.append(
                    Position(
                        chain=chain,
                        protocol=str(protocol),
                        protocol_id=first_field(raw, "protocol_id"),
                        kind=self._position_kind(str(label)),
                        legs=self._position_legs(raw, detail),
                        total_usd_value=as_float(total),
                        protocol_tier=self.knowledge_base.protocol_tier(str(protocol)),
                    )
                )
            except (ValidationError, ValueError, TypeError) as e:
                self.logger.warning(f"Skipping malformed DeFi position on {chain}: {e}")

        return positions

    @staticmethod
    def _position_kind(label: str) -> PositionKind:
        text = label.lower()
        if any(word in text for word in ("lend", "suppl", "borrow", "deposit")):
            return "lending"
        if any(word in text for word in ("liquidity", "lp", "pool")):
            return "liquidity"
        if "stak" in text:
            return "staking"
        if any(word in text for word in ("farm", "reward", "vault", "yield")):
            return "farming"
        return "other"

    @staticmethod
    def _position_legs(raw: Dict[str, Any], detail: Dict[str, Any]) -> List[TokenLeg]:
        raw_legs = first_field(raw, "tokens", default=None) or first_field(detail, "tokens", default=None)
        if raw_legs is None:
            raw_legs = first_field(raw, "position_details", default=[])
        if not isinstance(raw_legs, list):
            return []

        legs = []
        for leg in raw_legs:
            if not isinstance(leg, dict):
                continue
            usd = first_field(leg, "usd_value", "balance_usd", default=None)
            legs.append(
                TokenLeg(
                    symbol=str(first_field(leg, "symbol", "token_symbol", default="UNKNOWN")),
                    amount=as_float(first_field(leg, "balance_formatted", "amount", "balance")),
                    usd_value=as_float(usd) if usd is not None else None,
                )
            )
        return legs

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def transaction_value_eth(self, tx: Dict[str, Any]) -> float:
        return float(as_decimal(first_field(tx, "value", default="0")) / WEI_PER_ETH)

    def categorize_transaction(self, chain: str, tx: Dict[str, Any]) -> Optional[Interaction]:
        """Classify one wallet -> contract call; None when it is a plain transfer"""
        to_address = str(first_field(tx, "to_address", "to", default="")).lower()
        input_data = str(first_field(tx, "input", "data", default="") or "")
        kb = self.knowledge_base

        protocol: Optional[str] = None
        if kb.is_mixer(to_address):
            protocol, kind, tier = MIXER_PROTOCOL_NAME, "smart_contract", "high"
        elif kb.known_contract(to_address):
            name, protocol_tier = kb.known_contract(to_address)
            protocol, kind, tier = name, kb.interaction_type_for(name), kb.tier_risk(protocol_tier)
        elif input_data[:10].lower() in kb.known_selectors:
            protocol, kind, tier = kb.known_selectors[input_data[:10].lower()]
        elif len(input_data) > 10:
            protocol, kind, tier = to_address, "smart_contract", "medium"

        if protocol is None:
            return None

        return Interaction(
            target_address=to_address,
            protocol=protocol,
            interaction_type=kind,
            risk_tier=tier,
            value_usd=self.transaction_value_eth(tx) * self.thresholds.eth_price_usd,
            is_failed=str(first_field(tx, "receipt_status", default="1")) == "0",
            chain=chain,
            tx_hash=first_field(tx, "hash", "transaction_hash"),
            timestamp=first_field(tx, "block_timestamp", "timestamp"),
        )

    def normalize_transactions(self, chain: str, raw_txs: Iterable[Dict[str, Any]]) -> List[Interaction]:
        interactions: List[Interaction] = []
        for tx in list(raw_txs or [])[: self.thresholds.transactions_analyzed]:
            to_address = str(first_field(tx, "to_address", "to", default="")).lower()
            from_address = str(first_field(tx, "from_address", "from", default="")).lower()
            if not to_address or to_address == from_address:
                continue
            try:
                interaction = self.categorize_transaction(chain, tx)
            except (ValidationError, ValueError, TypeError) as e:
                self.logger.warning(f"Skipping malformed transaction on {chain}: {e}")
                continue
            if interaction:
                interactions.append(interaction)
        return interactions

    # ========================================================================
    # WALLET LEVEL
    # ========================================================================

    def normalize_net_worth(self, raw: Dict[str, Any]) -> NetWorth:
        per_chain: Dict[str, float] = {}
        for entry in first_field(raw, "chains", default=[]) or []:
            chain = canonical_chain(first_field(entry, "chain", "chain_id"))
            if chain:
                per_chain[chain] = per_chain.get(chain, 0.0) + as_float(
                    first_field(entry, "networth_usd", "total_usd")
                )
        total = first_field(raw, "total_networth_usd", "total_usd", default=None)
        return NetWorth(
            total_usd=as_float(total) if total is not None else sum(per_chain.values()),
            per_chain=per_chain,
        )

    def normalize_profit_loss(self, raw: Dict[str, Any]) -> TradingPnL:
        """Sum per-chain profitability summaries; a bare summary counts as one entry"""
        entries = first_field(raw, "chains", default=None)
        if not isinstance(entries, list):
            entries = [raw] if isinstance(raw, dict) and raw else []

        pnl = TradingPnL()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            profit = as_float(first_field(entry, "total_realized_profit_usd", "realized_profit_usd"))
            pnl.realized_profit_usd += profit
            pnl.bought_volume_usd += as_float(first_field(entry, "total_bought_volume_usd", "bought_volume_usd"))
            pnl.sold_volume_usd += as_float(first_field(entry, "total_sold_volume_usd", "sold_volume_usd"))
            pnl.trade_count += max(as_int(first_field(entry, "total_count_of_trades", "trade_count", default=0), 0), 0)
            chain = canonical_chain(first_field(entry, "chain", "chain_id"))
            if chain:
                pnl.per_chain[chain] = pnl.per_chain.get(chain, 0.0) + profit
        return pnl

    def derive_risk_indicators(
        self,
        payloads: Dict[str, RawChainPayload],
        positions: List[Position],
        now: Optional[datetime] = None,
    ) -> RiskIndicators:
        """Binary flags; mixer contact counts regardless of value"""
        now = now or datetime.now(timezone.utc)
        mixers: List[str] = []
        high_value = False
        oldest: Optional[datetime] = None

        for chain, payload in payloads.items():
            eth_denominated = self.knowledge_base.native_symbols.get(chain, "ETH") == "ETH"
            for tx in payload.transactions:
                for key in ("to_address", "from_address"):
                    address = str(first_field(tx, key, default="")).lower()
                    if self.knowledge_base.is_mixer(address) and address not in mixers:
                        mixers.append(address)
                if eth_denominated and self.transaction_value_eth(tx) > self.thresholds.high_value_tx_eth:
                    high_value = True
                seen = parse_timestamp(first_field(tx, "block_timestamp", "timestamp"))
                if seen and (oldest is None or seen < oldest):
                    oldest = seen

        return RiskIndicators(
            interacted_with_mixers=bool(mixers),
            high_value_transactions=high_value,
            new_wallet=oldest is not None and oldest > now - timedelta(days=self.thresholds.new_wallet_days),
            diverse_protocols=len(positions) > 3,
            mixer_addresses=mixers,
        )

    def normalize_chain(
        self, chain: str, payload: RawChainPayload, now: Optional[datetime] = None
    ) -> ChainSnapshot:
        """Normalize one chain; each section degrades to empty on failure"""
        native = None
        try:
            native = self.normalize_native(chain, payload.native_balance)
        except (ValidationError, ValueError, TypeError, ArithmeticError) as e:
            self.logger.warning(f"Native balance unusable on {chain}: {e}")

        tokens = self.normalize_tokens(chain, payload.token_balances, now=now)
        holdings = self.sort_holdings(([native] if native else []) + tokens)

        return ChainSnapshot(
            chain=chain,
            holdings=holdings,
            positions=self.normalize_positions(chain, payload.defi_positions),
            interactions=self.normalize_transactions(chain, payload.transactions),
            native_balance=native.balance if native else 0.0,
            token_count=len(tokens),
        )

    def build_snapshot(
        self,
        address: str,
        payloads: Dict[str, RawChainPayload],
        raw_net_worth: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
        raw_profit_loss: Optional[Dict[str, Any]] = None,
    ) -> WalletSnapshot:
        """
        Build the wallet-level view across chains.

        The same asset on two chains stays two holdings; only net worth and
        the active-chain set are aggregated.
        """
        chains = {chain: self.normalize_chain(chain, payload, now=now) for chain, payload in payloads.items()}

        holdings = self.sort_holdings([h for snap in chains.values() for h in snap.holdings])
        positions = [p for snap in chains.values() for p in snap.positions]
        interactions = [i for snap in chains.values() for i in snap.interactions]

        seen_protocols: List[str] = []
        for position in positions:
            if position.protocol != "unknown" and position.protocol not in seen_protocols:
                seen_protocols.append(position.protocol)
        for protocol in seen_protocols:
            interactions.append(
                Interaction(
                    protocol=protocol,
                    interaction_type="defi_position",
                    risk_tier=self.knowledge_base.tier_risk(self.knowledge_base.protocol_tier(protocol)),
                    chain="multi-chain",
                )
            )

        snapshot = WalletSnapshot(
            address=address.lower(),
            chains=chains,
            holdings=holdings,
            positions=positions,
            interactions=interactions,
            net_worth=self.normalize_net_worth(raw_net_worth or {}),
            profit_loss=self.normalize_profit_loss(raw_profit_loss or {}),
            risk_indicators=self.derive_risk_indicators(payloads, positions, now=now),
        )
        self.logger.info(
            f"🔍 Normalized {address}: {len(holdings)} holdings, {len(positions)} positions, "
            f"{len(interactions)} interactions, active chains={snapshot.active_chains}"
        )
        return snapshot
