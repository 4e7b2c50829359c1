"""
Protocol interaction scoring
Scores how a wallet uses smart contracts: high-risk transactions,
protocol diversification and transaction size.
"""
from typing import Any, Dict, List, Optional
import logging

from walletrisk.models.schemas import Interaction, ScoreResult, clamp_score
from walletrisk.scoring.thresholds import ScoringThresholds
from walletrisk.utils.knowledge_base import ADDRESS_PATTERN, MIXER_PROTOCOL_NAME, KnowledgeBase

logger = logging.getLogger(__name__)

PROTOCOL_BASE_SCORE = 15
NO_INTERACTIONS_SCORE = 5
HIGH_RISK_TX_POINTS = 15
HIGH_RISK_TX_CAP = 60


def is_high_risk_transaction(interaction: Interaction, thresholds: ScoringThresholds) -> bool:
    """
    (v > high and tier high) or (v > medium and tier high and failed)
    or (v > medium and failed)
    """
    value = interaction.value_usd
    high_tier = interaction.risk_tier == "high"
    return (
        (value > thresholds.high_risk_tx_usd and high_tier)
        or (value > thresholds.medium_risk_tx_usd and high_tier and interaction.is_failed)
        or (value > thresholds.medium_risk_tx_usd and interaction.is_failed)
    )


def _no_interactions_result() -> ScoreResult:
    return ScoreResult(
        score=NO_INTERACTIONS_SCORE,
        factors=[
            "No significant protocol interactions detected",
            "Minimal protocol exposure",
            "Basic transaction patterns",
            "Low smart contract risk",
            "Conservative usage patterns",
        ],
        recommendations=[
            "Current approach minimizes protocol risks",
            "Consider exploring established DeFi protocols for yield opportunities",
            "If expanding to DeFi, start with tier-1 protocols like Aave or Uniswap",
            "Maintain current conservative approach if risk tolerance is low",
        ],
        narrative=(
            "No significant protocol interactions detected. The wallet appears to primarily use basic "
            "functionality (token transfers, native transactions) without extensive DeFi or protocol engagement."
        ),
        details={"unique_protocols": 0, "total_interactions": 0, "high_risk_transactions": []},
        empty=True,
    )


def score_protocols(
    interactions: List[Interaction],
    knowledge_base: KnowledgeBase,
    thresholds: Optional[ScoringThresholds] = None,
) -> ScoreResult:
    """
    Score protocol usage.

    Args:
        interactions: Classified transactions plus defi_position entries
        knowledge_base: Used to flag protocols worth researching
        thresholds: Dollar cutoffs for high-risk transactions

    Returns:
        ScoreResult; the no-interaction case is a fixed score of 5
    """
    thresholds = thresholds or ScoringThresholds()
    if not interactions:
        return _no_interactions_result()

    protocol_counts: Dict[str, int] = {}
    protocol_volumes: Dict[str, float] = {}
    transactions = [i for i in interactions if i.interaction_type != "defi_position"]
    for interaction in interactions:
        protocol_counts[interaction.protocol] = protocol_counts.get(interaction.protocol, 0) + 1
        protocol_volumes[interaction.protocol] = protocol_volumes.get(interaction.protocol, 0.0) + interaction.value_usd

    high_risk = [tx for tx in transactions if is_high_risk_transaction(tx, thresholds)]
    total_volume = sum(tx.value_usd for tx in transactions)
    average_value = total_volume / len(transactions) if transactions else 0.0
    unique_protocols = len(protocol_counts)

    score = float(PROTOCOL_BASE_SCORE)
    findings: List[str] = []
    recommendations: List[str] = []

    if high_risk:
        score += min(len(high_risk) * HIGH_RISK_TX_POINTS, HIGH_RISK_TX_CAP)
        findings.append(f"{len(high_risk)} high-risk transaction(s) detected")
        recommendations.append("Review high-value failed transactions or interactions with unvetted protocols")
    else:
        score -= 5
        findings.append("No high-risk transactions detected")

    if unique_protocols > 5:
        score -= 5
        findings.append(f"Good protocol diversification with {unique_protocols} unique protocols")
        recommendations.append("Continue diversified DeFi usage for risk distribution")

    if average_value > 1000:
        findings.append(
            f"Higher average transaction values (${average_value:,.2f}) require careful protocol selection"
        )
        recommendations.append("For high-value transactions, prioritize well-audited protocols")
    elif average_value < 100:
        score -= 3
        findings.append("Low-value transactions indicate normal DeFi exploration")

    if score <= 20:
        findings.append("Protocol usage patterns show good risk management")
    elif score <= 40:
        findings.append("Moderate risk profile with room for improvement")

    final_score = clamp_score(score)
    details: Dict[str, Any] = {
        "protocol_counts": protocol_counts,
        "protocol_volumes": protocol_volumes,
        "total_interactions": len(interactions),
        "total_volume": total_volume,
        "average_transaction_value": average_value,
        "unique_protocols": unique_protocols,
        "unknown_protocols": unknown_protocols(interactions, knowledge_base),
        "high_risk_transactions": [
            {
                "protocol": tx.protocol,
                "value_usd": tx.value_usd,
                "is_failed": tx.is_failed,
                "risk_tier": tx.risk_tier,
                "tx_hash": tx.tx_hash,
                "timestamp": tx.timestamp,
            }
            for tx in high_risk
        ],
    }

    logger.info(
        f"🔍 Protocol score {final_score}/100: {unique_protocols} protocols, "
        f"{len(high_risk)} high-risk transactions, ${total_volume:,.2f} volume"
    )

    narrative = (
        f"Protocol usage analysis shows engagement with {unique_protocols} unique protocols across "
        f"${total_volume:,.2f} in transaction volume. This demonstrates "
        f"{'sophisticated' if unique_protocols > 3 else 'basic'} DeFi participation. {'. '.join(findings)}."
    )
    return ScoreResult(
        score=final_score,
        factors=findings,
        recommendations=recommendations,
        narrative=narrative,
        details=details,
    )


def unknown_protocols(interactions: List[Interaction], knowledge_base: KnowledgeBase) -> List[str]:
    """Named protocols first, bare contract addresses last"""
    names: List[str] = []
    for interaction in interactions:
        protocol = interaction.protocol
        if protocol in names or protocol == MIXER_PROTOCOL_NAME or interaction.risk_tier == "low":
            continue
        if knowledge_base.protocol_tier(protocol) == "unknown":
            names.append(protocol)
    return sorted(names, key=lambda name: bool(ADDRESS_PATTERN.match(name)))
