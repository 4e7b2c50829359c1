"""
Final Risk Aggregator
Combines the assets / protocols / pools sub-analyses into one overall report,
via the reasoning service when available and an arithmetic fallback otherwise.
"""
from typing import Any, Dict, List, Optional
import json
import logging
import math

from walletrisk.agents.base import ReasoningService, extract_json_object
from walletrisk.models.schemas import (
    Alert,
    FinalReport,
    MultiChainInfo,
    RiskIndicators,
    RiskLevel,
    RiskSummary,
    SubAnalysisResult,
    WalletSnapshot,
    clamp_score,
)
from walletrisk.scoring.assets import is_suspicious
from walletrisk.scoring.pools import group_positions
from walletrisk.utils.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

MAX_ALERTS = 10
HIGH_RISK_ALERT_THRESHOLD = 70
CRITICAL_ALERT_THRESHOLD = 85
HIGH_RISK_ALERT_MESSAGE = "High risk detected - requires immediate attention"
VALID_SEVERITIES = ("low", "medium", "high", "critical")

RISK_LEVEL_DESCRIPTIONS: Dict[str, str] = {
    "very-low": "Very Low Risk - Safe for conservative investors",
    "low": "Low Risk - Generally safe with minimal concerns",
    "medium": "Medium Risk - Some concerns, requires monitoring",
    "high": "High Risk - Significant concerns, immediate attention needed",
    "very-high": "Very High Risk - Dangerous, immediate action required",
}

RISK_LEVEL_PRESENTATION: Dict[str, Dict[str, str]] = {
    "very-low": {"status": "Very Low Risk", "color": "#10B981", "urgency": "none"},
    "low": {"status": "Low Risk", "color": "#10B981", "urgency": "low"},
    "medium": {"status": "Medium Risk", "color": "#F59E0B", "urgency": "medium"},
    "high": {"status": "High Risk", "color": "#EF4444", "urgency": "high"},
    "very-high": {"status": "Very High Risk", "color": "#DC2626", "urgency": "critical"},
}

SYSTEM_PROMPT = """You are the final risk assessor for a multi-chain crypto wallet.
You receive three sub-analyses (assets, protocols, pools), each with a risk score,
plus wallet-level metrics (net worth, active chains, trading P&L, risk indicators).

Weight the sub-scores appropriately, identify the most critical risks, and consider
cross-chain bridge exposure and chain-specific risks.

Reply with JSON only:
{
  "overall_risk_score": 0-100,
  "confidence_score": 0-100,
  "summary": "overall assessment",
  "key_risks": ["..."],
  "recommendations": ["..."],
  "alerts": [{"severity": "low|medium|high|critical", "message": "..."}],
  "multi_chain_info": {"cross_chain_risks": ["..."], "chain_specific_risks": {"<chain>": ["..."]}}
}"""


def risk_level_for(score: int) -> RiskLevel:
    """0-20 very-low, 21-40 low, 41-60 medium, 61-80 high, 81-100 very-high"""
    if score <= 20:
        return "very-low"
    if score <= 40:
        return "low"
    if score <= 60:
        return "medium"
    if score <= 80:
        return "high"
    return "very-high"


def describe_risk_level(level: RiskLevel) -> RiskSummary:
    presentation = RISK_LEVEL_PRESENTATION[level]
    return RiskSummary(
        status=presentation["status"],
        color=presentation["color"],
        description=RISK_LEVEL_DESCRIPTIONS.get(level, "Unknown risk level"),
        urgency=presentation["urgency"],
    )


class FinalAggregator:
    """Synthesizes the FinalReport; never raises for reasoning-service problems."""

    def __init__(
        self,
        reasoning: Optional[ReasoningService] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> None:
        self.reasoning = reasoning
        self.knowledge_base = knowledge_base or KnowledgeBase.default()
        self.logger = logging.getLogger(self.__class__.__name__)

    async def aggregate(
        self,
        assets: Optional[SubAnalysisResult],
        protocols: Optional[SubAnalysisResult],
        pools: Optional[SubAnalysisResult],
        snapshot: Optional[WalletSnapshot] = None,
    ) -> FinalReport:
        """
        Combine available sub-analyses into the final report.

        Missing sub-analyses are excluded, not treated as zero.
        """
        available = {
            kind: result
            for kind, result in (("assets", assets), ("protocols", protocols), ("pools", pools))
            if result is not None
        }
        if len(available) < 3:
            missing = [k for k in ("assets", "protocols", "pools") if k not in available]
            self.logger.warning(f"Missing analyses: {', '.join(missing)}. Proceeding with available data.")

        report: Optional[FinalReport] = None
        if self.reasoning is not None:
            try:
                report = await self._reasoned_report(available, snapshot)
            except Exception as e:
                self.logger.warning(f"⚠️ Final narrative failed, using arithmetic fallback: {type(e).__name__}: {e}")

        if report is None:
            report = self.fallback_report(available, snapshot)

        self.logger.info(
            f"🎯 Final risk {report.overall_risk_score}/100 ({report.risk_level}), "
            f"confidence {report.confidence_score}, source={report.source}"
        )
        return report

    # ========================================================================
    # LLM PATH
    # ========================================================================

    async def _reasoned_report(
        self, available: Dict[str, SubAnalysisResult], snapshot: Optional[WalletSnapshot]
    ) -> FinalReport:
        payload = {
            "analyses": {kind: result.model_dump(mode="json") for kind, result in available.items()},
            "wallet": self._wallet_metrics(snapshot),
        }
        reply = await self.reasoning.complete(SYSTEM_PROMPT, json.dumps(payload, default=str))
        data = extract_json_object(reply.text)
        return self._normalize_reply(data, snapshot)

    def _normalize_reply(self, data: Dict[str, Any], snapshot: Optional[WalletSnapshot]) -> FinalReport:
        score = clamp_score(_number_or(data.get("overall_risk_score"), 50))
        confidence = clamp_score(_number_or(data.get("confidence_score"), 50))
        summary = data.get("summary") or data.get("gpt_summary") or "Risk analysis completed with limited data."

        raw_alerts = data.get("alerts") if isinstance(data.get("alerts"), list) else []
        alerts = [
            Alert(
                severity=alert.get("severity") if alert.get("severity") in VALID_SEVERITIES else "medium",
                message=str(alert["message"]),
            )
            for alert in raw_alerts
            if isinstance(alert, dict) and alert.get("message")
        ]

        multi = data.get("multi_chain_info") or data.get("multiChainInfo") or {}
        cross_chain = _string_list(multi.get("cross_chain_risks")) if isinstance(multi, dict) else []
        per_chain = multi.get("chain_specific_risks") if isinstance(multi, dict) else None

        return FinalReport(
            overall_risk_score=score,
            risk_level=risk_level_for(score),
            confidence_score=confidence,
            summary=str(summary),
            key_risks=_string_list(data.get("key_risks")),
            recommendations=_string_list(data.get("recommendations")),
            alerts=self._synthesize_alerts(score, snapshot, alerts),
            multi_chain_info=self.build_multi_chain_info(snapshot, cross_chain, per_chain),
            source="llm",
        )

    # ========================================================================
    # FALLBACK PATH
    # ========================================================================

    def fallback_report(
        self, available: Dict[str, SubAnalysisResult], snapshot: Optional[WalletSnapshot]
    ) -> FinalReport:
        """Mean of present sub-scores; confidence = clamp(25 x count, 30, 70)"""
        scores = [result.risk_score for result in available.values()]
        score = clamp_score(sum(scores) / len(scores)) if scores else 50
        confidence = max(30, min(70, 25 * len(available)))
        basis = ", ".join(available) if available else "no"

        return FinalReport(
            overall_risk_score=score,
            risk_level=risk_level_for(score),
            confidence_score=confidence,
            summary=f"Automated risk analysis based on {basis} analysis. Overall risk score: {score}/100.",
            key_risks=["Limited data analysis fallback"],
            recommendations=[
                "Run comprehensive analysis with all data sources",
                "Review individual analysis components",
            ],
            alerts=self._synthesize_alerts(score, snapshot, []),
            multi_chain_info=self.build_multi_chain_info(snapshot),
            source="deterministic-fallback",
        )

    # ========================================================================
    # SHARED
    # ========================================================================

    def _synthesize_alerts(
        self, score: int, snapshot: Optional[WalletSnapshot], alerts: List[Alert]
    ) -> List[Alert]:
        """Rule-based alerts first, then any narrated alerts, capped at 10"""
        indicators = snapshot.risk_indicators if snapshot else RiskIndicators()
        synthesized: List[Alert] = []

        if indicators.interacted_with_mixers:
            synthesized.append(
                Alert(
                    severity="critical",
                    message=(
                        "Wallet has interacted with known mixer/privacy protocol address(es): "
                        f"{', '.join(indicators.mixer_addresses)}"
                    ),
                )
            )
        if score > HIGH_RISK_ALERT_THRESHOLD:
            synthesized.append(
                Alert(
                    severity="critical" if score > CRITICAL_ALERT_THRESHOLD else "high",
                    message=HIGH_RISK_ALERT_MESSAGE,
                )
            )
        if indicators.high_value_transactions:
            synthesized.append(Alert(severity="medium", message="High-value transactions detected"))
        if indicators.new_wallet:
            synthesized.append(Alert(severity="low", message="Recently created wallet with limited history"))

        merged: List[Alert] = []
        seen = set()
        for alert in synthesized + alerts:
            if alert.message in seen:
                continue
            seen.add(alert.message)
            merged.append(alert)
        return merged[:MAX_ALERTS]

    def build_multi_chain_info(
        self,
        snapshot: Optional[WalletSnapshot],
        cross_chain_risks: Optional[List[str]] = None,
        chain_specific_risks: Any = None,
    ) -> Optional[MultiChainInfo]:
        """Lists exactly the chains with activity; narrated risks for other chains are dropped"""
        if snapshot is None:
            return None
        active = snapshot.active_chains

        per_chain: Dict[str, List[str]] = {chain: [] for chain in active}
        if isinstance(chain_specific_risks, dict):
            for chain, risks in chain_specific_risks.items():
                if chain in per_chain:
                    per_chain[chain].extend(_string_list(risks))
        else:
            for chain in active:
                suspicious = [
                    h for h in snapshot.chains[chain].holdings if is_suspicious(h, self.knowledge_base)
                ]
                if suspicious:
                    per_chain[chain].append(f"{len(suspicious)} suspected scam tokens on {chain}")

        cross = list(cross_chain_risks or [])
        if not cross_chain_risks:
            if len(active) > 1:
                cross.append(f"Assets spread across {len(active)} chains add bridge and management complexity")
            groups = group_positions(snapshot.positions, self.knowledge_base)
            spanning = [name for name, group in groups.items() if len(group["chains"]) > 1]
            if spanning:
                cross.append(f"Cross-chain DeFi exposure in: {', '.join(spanning)}")

        return MultiChainInfo(
            total_chains_active=len(active),
            chains_with_activity=active,
            cross_chain_risks=cross,
            chain_specific_risks={chain: risks for chain, risks in per_chain.items() if risks},
        )

    @staticmethod
    def _wallet_metrics(snapshot: Optional[WalletSnapshot]) -> Dict[str, Any]:
        if snapshot is None:
            return {}
        return {
            "net_worth_usd": snapshot.net_worth.total_usd,
            "net_worth_per_chain": snapshot.net_worth.per_chain,
            "trading_pnl": {
                "realized_profit_usd": snapshot.profit_loss.realized_profit_usd,
                "trade_count": snapshot.profit_loss.trade_count,
                "bought_volume_usd": snapshot.profit_loss.bought_volume_usd,
                "sold_volume_usd": snapshot.profit_loss.sold_volume_usd,
            },
            "active_chains": snapshot.active_chains,
            "chains": {
                name: {
                    "token_count": chain.token_count,
                    "native_balance": chain.native_balance,
                    "defi_positions": len(chain.positions),
                }
                for name, chain in snapshot.chains.items()
                if chain.has_activity
            },
            "risk_indicators": snapshot.risk_indicators.model_dump(),
        }


def _number_or(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return float(value)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item not in (None, "")]
