"""
Wallet Risk Orchestrator
Runs the full analysis for one address:
    validate -> lock -> cache check -> fetch per chain -> persist raw data ->
    normalize -> assets/protocols/pools (concurrently) -> aggregate -> persist
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging
import time

from config.settings import Settings
from walletrisk.agents.aggregator import FinalAggregator, describe_risk_level
from walletrisk.agents.base import OpenAIReasoningService, ReasoningService
from walletrisk.agents.narrative import NarrativeAugmenter, score_with_narrative_fallback
from walletrisk.api_clients.base import ChainDataProvider, LookupService
from walletrisk.database.report_store import FileReportStore, ReportStore, ReportStoreError
from walletrisk.models.schemas import (
    AnalysisKind,
    AnalysisOutcome,
    AnalysisStatus,
    RawChainPayload,
    ScoreResult,
    SubAnalysisResult,
    WalletReport,
    WalletSnapshot,
    utcnow,
)
from walletrisk.normalizer.chain_normalizer import ChainDataNormalizer
from walletrisk.scoring.assets import score_assets
from walletrisk.scoring.pools import score_pools
from walletrisk.scoring.protocols import score_protocols, unknown_protocols
from walletrisk.scoring.thresholds import ScoringThresholds
from walletrisk.utils.knowledge_base import ADDRESS_PATTERN, KnowledgeBase
from walletrisk.workflow.locks import AddressLockRegistry

logger = logging.getLogger(__name__)

ANALYSIS_KINDS: Tuple[AnalysisKind, ...] = ("assets", "protocols", "pools")
MAX_HOLDINGS_IN_PAYLOAD = 100
MAX_INTERACTIONS_IN_PAYLOAD = 50


class InvalidAddressError(ValueError):
    """Address is not a 0x-prefixed 40-hex-digit EVM address"""


def validate_address(address: str) -> str:
    """Return the lower-cased address or raise InvalidAddressError"""
    candidate = (address or "").strip()
    if not ADDRESS_PATTERN.match(candidate):
        raise InvalidAddressError(f"Invalid wallet address format: {address!r}")
    return candidate.lower()


class WalletRiskOrchestrator:
    """
    Coordinates providers, scorers, narrative agents and the report store.

    Requests for the same address are serialized; different addresses run
    independently.
    """

    def __init__(
        self,
        provider: ChainDataProvider,
        store: ReportStore,
        reasoning: Optional[ReasoningService] = None,
        lookup: Optional[LookupService] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
        settings: Optional[Settings] = None,
        thresholds: Optional[ScoringThresholds] = None,
    ):
        self.settings = settings or Settings()
        self.provider = provider
        self.store = store
        self.reasoning = reasoning
        self.lookup = lookup
        self.knowledge_base = knowledge_base or KnowledgeBase.default()
        self.thresholds = thresholds or ScoringThresholds.from_settings(self.settings)
        self.chains: List[str] = list(self.settings.SUPPORTED_CHAINS)

        self.normalizer = ChainDataNormalizer(self.knowledge_base, self.thresholds)
        self.narrator: Optional[NarrativeAugmenter] = None
        if reasoning is not None:
            self.narrator = NarrativeAugmenter(
                reasoning,
                knowledge_base=self.knowledge_base,
                lookup=lookup,
                max_iterations=self.settings.NARRATIVE_MAX_ITERATIONS,
            )
        self.aggregator = FinalAggregator(reasoning, self.knowledge_base)
        self.locks = AddressLockRegistry()
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def build_default(cls, settings: Optional[Settings] = None) -> "WalletRiskOrchestrator":
        """Wire Moralis, the configured report backend and (when keyed) OpenAI and Valyu"""
        from walletrisk.api_clients.moralis import MoralisClient
        from walletrisk.api_clients.valyu import ValyuSearchClient

        settings = settings or Settings()
        if settings.REPORT_BACKEND == "supabase":
            from walletrisk.database.supabase_store import SupabaseReportStore
            store: ReportStore = SupabaseReportStore(settings=settings)
        else:
            store = FileReportStore(settings.REPORTS_DIR)

        reasoning = None
        if settings.OPENAI_API_KEY and settings.NARRATIVE_ENABLED:
            reasoning = OpenAIReasoningService(settings=settings)
        else:
            logger.info("Narrative generation disabled; deterministic analysis only")

        lookup = ValyuSearchClient(settings=settings) if settings.VALYU_API_KEY else None
        return cls(MoralisClient(settings=settings), store, reasoning=reasoning, lookup=lookup, settings=settings)

    async def close(self) -> None:
        for client in (self.provider, self.lookup):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def analyze_wallet(
        self,
        address: str,
        force_refresh: bool = False,
        max_age_minutes: Optional[int] = None,
    ) -> AnalysisOutcome:
        """
        Analyze a wallet, reusing a fresh cached report when possible.

        Args:
            address: 0x-prefixed EVM address
            force_refresh: Ignore any cached report
            max_age_minutes: Cache TTL (defaults to REPORT_MAX_AGE_MINUTES)

        Returns:
            AnalysisOutcome with the persisted report

        Raises:
            InvalidAddressError: malformed address (before any work)
            ReportStoreError: storage failure
        """
        address = validate_address(address)
        max_age = self.settings.REPORT_MAX_AGE_MINUTES if max_age_minutes is None else max_age_minutes
        started = time.perf_counter()

        async with self.locks.hold(address):
            existing = await self.store.load(address)
            if (
                not force_refresh
                and existing is not None
                and existing.final_analysis is not None
                and not self.store.is_stale(existing, max_age)
            ):
                self.logger.info(f"♻️ Using cached analysis for {address} (updated {existing.last_updated.isoformat()})")
                return self._outcome(existing, started, complete=True, cached=True)

            self.logger.info(f"🚀 Starting wallet risk analysis for {address}")
            try:
                return await self._run_pipeline(address, started)
            except ReportStoreError:
                raise
            except Exception as e:
                self.logger.exception(f"❌ Wallet analysis failed for {address}: {e}")
                partial = await self.store.load(address) or WalletReport(address=address)
                return self._outcome(partial, started, complete=False, errors=[f"{type(e).__name__}: {e}"])

    async def get_analysis_status(self, address: str, max_age_minutes: Optional[int] = None) -> AnalysisStatus:
        address = validate_address(address)
        max_age = self.settings.REPORT_MAX_AGE_MINUTES if max_age_minutes is None else max_age_minutes
        report = await self.store.load(address)
        if report is None:
            return AnalysisStatus(exists=False)
        return AnalysisStatus(
            exists=True,
            last_updated=report.last_updated,
            analyses_complete=list(report.analysis.available()),
            final_analysis_complete=report.final_analysis is not None,
            stale=self.store.is_stale(report, max_age),
        )

    async def delete_wallet_analysis(self, address: str) -> bool:
        address = validate_address(address)
        async with self.locks.hold(address):
            return await self.store.delete(address)

    # ========================================================================
    # PIPELINE
    # ========================================================================

    async def _run_pipeline(self, address: str, started: float) -> AnalysisOutcome:
        payloads, raw_net_worth, raw_profit_loss = await self._fetch_wallet_data(address)
        await self.store.update_raw_data(
            address,
            self.provider.name,
            {
                "chains": {chain: payload.model_dump() for chain, payload in payloads.items()},
                "net_worth": raw_net_worth,
                "profit_loss": raw_profit_loss,
                "fetched_at": utcnow().isoformat(),
            },
        )

        snapshot = self.normalizer.build_snapshot(
            address, payloads, raw_net_worth, raw_profit_loss=raw_profit_loss
        )
        await self.store.update_risk_indicators(address, snapshot.risk_indicators)

        results = await self._run_sub_analyses(snapshot)
        for kind, result in results.items():
            if result is not None:
                await self.store.update_sub_analysis(address, kind, result)

        final = await self.aggregator.aggregate(results["assets"], results["protocols"], results["pools"], snapshot)
        report = await self.store.update_final(address, final)

        sources = [self.provider.name]
        if any(r is not None and r.source == "llm" for r in results.values()) or final.source == "llm":
            sources.append("llm")
        missing = [kind for kind, result in results.items() if result is None]
        errors = [f"{kind} analysis failed" for kind in missing]

        outcome = self._outcome(report, started, complete=True, data_sources=sources, errors=errors)
        self.logger.info(
            f"✅ Analysis complete for {address}: {final.overall_risk_score}/100 ({final.risk_level}) "
            f"in {outcome.processing_time_ms}ms"
        )
        return outcome

    async def _safe_call(self, label: str, call: Awaitable[Any], default: Any) -> Any:
        try:
            return await call
        except Exception as e:
            self.logger.warning(f"⚠️ {self.provider.name} {label} failed: {type(e).__name__}: {e}")
            return default

    async def _fetch_chain(self, address: str, chain: str) -> RawChainPayload:
        tokens, native, positions, transactions = await asyncio.gather(
            self._safe_call(f"{chain} token balances", self.provider.get_token_balances(address, chain), []),
            self._safe_call(f"{chain} native balance", self.provider.get_native_balance(address, chain), {}),
            self._safe_call(f"{chain} defi positions", self.provider.get_defi_positions(address, chain), []),
            self._safe_call(
                f"{chain} transactions",
                self.provider.get_transactions(address, chain, limit=self.settings.TRANSACTION_FETCH_LIMIT),
                [],
            ),
        )
        return RawChainPayload(
            token_balances=tokens,
            native_balance=native,
            defi_positions=positions,
            transactions=transactions,
        )

    async def _fetch_wallet_data(
        self, address: str
    ) -> Tuple[Dict[str, RawChainPayload], Dict[str, Any], Dict[str, Any]]:
        """Fan out per chain, join before normalization"""
        self.logger.info(f"📡 Fetching {address} on {', '.join(self.chains)}")
        *chain_payloads, raw_net_worth, raw_profit_loss = await asyncio.gather(
            *(self._fetch_chain(address, chain) for chain in self.chains),
            self._safe_call("net worth", self.provider.get_net_worth(address, self.chains), {}),
            self._safe_call("trading P&L", self.provider.get_profit_loss(address, self.chains), {}),
        )
        payloads = dict(zip(self.chains, chain_payloads))
        return (
            payloads,
            raw_net_worth if isinstance(raw_net_worth, dict) else {},
            raw_profit_loss if isinstance(raw_profit_loss, dict) else {},
        )

    async def _run_sub_analyses(self, snapshot: WalletSnapshot) -> Dict[str, Optional[SubAnalysisResult]]:
        """Run the three sub-analyses concurrently; one that raises is recorded as absent"""
        kb = self.knowledge_base
        scorers: Dict[str, Callable[[], ScoreResult]] = {
            "assets": lambda: score_assets(snapshot, kb),
            "protocols": lambda: score_protocols(snapshot.interactions, kb, self.thresholds),
            "pools": lambda: score_pools(snapshot.positions, kb),
        }
        payload_builders = {
            "assets": self._asset_payload,
            "protocols": self._protocol_payload,
            "pools": self._pool_payload,
        }

        outcomes = await asyncio.gather(
            *(
                score_with_narrative_fallback(
                    kind, scorers[kind], self._narrator_for(kind, payload_builders[kind], snapshot)
                )
                for kind in ANALYSIS_KINDS
            ),
            return_exceptions=True,
        )

        results: Dict[str, Optional[SubAnalysisResult]] = {}
        for kind, outcome in zip(ANALYSIS_KINDS, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error(f"❌ {kind} analysis failed: {type(outcome).__name__}: {outcome}")
                results[kind] = None
            else:
                self.logger.info(f"📊 {kind}: {outcome.risk_score}/100 ({outcome.source})")
                results[kind] = outcome
        return results

    def _narrator_for(
        self,
        kind: AnalysisKind,
        payload_builder: Callable[[WalletSnapshot], Awaitable[Dict[str, Any]]],
        snapshot: WalletSnapshot,
    ) -> Optional[Callable[[ScoreResult], Awaitable[SubAnalysisResult]]]:
        if self.narrator is None:
            return None
        narrator = self.narrator

        async def narrate(baseline: ScoreResult) -> SubAnalysisResult:
            payload = await payload_builder(snapshot)
            return await narrator.narrate(kind, payload, baseline)

        return narrate

    # ========================================================================
    # NARRATIVE PAYLOADS
    # ========================================================================

    async def _asset_payload(self, snapshot: WalletSnapshot) -> Dict[str, Any]:
        return {
            "holdings": [h.model_dump() for h in snapshot.holdings[:MAX_HOLDINGS_IN_PAYLOAD]],
            "total_holdings": len(snapshot.holdings),
            "active_chains": snapshot.active_chains,
            "defi_positions": len(snapshot.positions),
        }

    async def _protocol_payload(self, snapshot: WalletSnapshot) -> Dict[str, Any]:
        unknown = unknown_protocols(snapshot.interactions, self.knowledge_base)
        research: Dict[str, Any] = {}
        if unknown and self.narrator is not None and self.lookup is not None:
            self.logger.info(f"🔍 Researching unknown protocols: {', '.join(unknown[:3])}")
            research = await self.narrator.research_unknown_protocols(unknown)
        return {
            "interactions": [i.model_dump() for i in snapshot.interactions[:MAX_INTERACTIONS_IN_PAYLOAD]],
            "total_interactions": len(snapshot.interactions),
            "unknown_protocols": unknown,
            "protocol_research": research,
        }

    async def _pool_payload(self, snapshot: WalletSnapshot) -> Dict[str, Any]:
        return {
            "positions": [p.model_dump() for p in snapshot.positions],
            "chains": sorted({p.chain for p in snapshot.positions}),
        }

    # ========================================================================
    # RESULTS
    # ========================================================================

    def _outcome(
        self,
        report: WalletReport,
        started: float,
        complete: bool,
        cached: bool = False,
        data_sources: Optional[List[str]] = None,
        errors: Optional[List[str]] = None,
    ) -> AnalysisOutcome:
        final = report.final_analysis
        return AnalysisOutcome(
            address=report.address,
            analysis_complete=complete,
            cached=cached,
            report=report,
            risk_summary=describe_risk_level(final.risk_level) if final else None,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            data_sources=data_sources if data_sources is not None else list(report.raw_data),
            errors=errors or [],
        )
