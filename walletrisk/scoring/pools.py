"""Pool / DeFi position scoring."""
from typing import Any, Dict, List
import logging

from walletrisk.models.schemas import Position, ScoreResult, clamp_score
from walletrisk.utils.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

POOL_BASE_SCORE = 40
NO_POSITIONS_SCORE = 0


def group_positions(positions: List[Position], knowledge_base: KnowledgeBase) -> Dict[str, Dict[str, Any]]:
    """Group positions by their (already lower-cased) protocol key"""
    groups: Dict[str, Dict[str, Any]] = {}
    for position in positions:
        group = groups.setdefault(
            position.protocol,
            {
                "positions": 0,
                "total_value": 0.0,
                "chains": [],
                "kinds": [],
                "tier": knowledge_base.protocol_tier(position.protocol),
            },
        )
        group["positions"] += 1
        group["total_value"] += position.total_usd_value
        if position.chain not in group["chains"]:
            group["chains"].append(position.chain)
        if position.kind not in group["kinds"]:
            group["kinds"].append(position.kind)
    return groups


def _no_positions_result() -> ScoreResult:
    return ScoreResult(
        score=NO_POSITIONS_SCORE,
        factors=[
            "No DeFi exposure across all chains",
            "No impermanent loss risk",
            "No smart contract risk from pools",
            "No multi-chain DeFi complexity",
        ],
        recommendations=[
            "Consider diversifying into established DeFi protocols if seeking yield",
            "Start with low-risk lending protocols like Aave or Compound on Ethereum",
            "Explore Layer 2 DeFi opportunities on Base or Polygon for lower fees",
            "Begin with single-asset staking before moving to LP positions",
        ],
        narrative=(
            "No DeFi pool positions detected across any supported chains. The wallet appears to hold "
            "only basic token positions without active DeFi participation."
        ),
        details={"position_count": 0, "protocol_count": 0, "total_value": 0.0, "protocol_groups": {}},
        empty=True,
    )


def score_pools(positions: List[Position], knowledge_base: KnowledgeBase) -> ScoreResult:
    """Base 40; tier-1 usage lowers it, unknown protocols and concentration raise it."""
    if not positions:
        return _no_positions_result()

    groups = group_positions(positions, knowledge_base)
    protocols = list(groups)
    tier1_count = sum(1 for group in groups.values() if group["tier"] == "tier1")
    unknown_count = sum(1 for group in groups.values() if group["tier"] == "unknown")
    total_value = sum(position.total_usd_value for position in positions)

    score = float(POOL_BASE_SCORE)
    findings: List[str] = []
    recommendations: List[str] = []

    if tier1_count:
        score -= 10
        findings.append(f"{tier1_count} position(s) in tier-1 protocols")

    if unknown_count:
        score += unknown_count * 15
        findings.append(f"{unknown_count} position(s) in unknown protocols")
        recommendations.append("Research unknown protocols for security audits and reputation")

    if len(protocols) == 1:
        score += 20
        findings.append("All positions concentrated in single protocol")
        recommendations.append("Diversify across multiple established protocols")
    elif len(protocols) > 3:
        score -= 10
        findings.append("Good protocol diversification")

    final_score = clamp_score(score)
    kind_risks = [knowledge_base.pool_kind_base_risk.get(p.kind, 50) for p in positions]
    details: Dict[str, Any] = {
        "position_count": len(positions),
        "protocol_count": len(protocols),
        "total_value": total_value,
        "protocol_groups": groups,
        "tier1_protocols": tier1_count,
        "unknown_protocols": [name for name, group in groups.items() if group["tier"] == "unknown"],
        "cross_chain_exposure": any(len(group["chains"]) > 1 for group in groups.values()),
        "average_kind_risk": sum(kind_risks) / len(kind_risks),
    }

    logger.info(f"🔍 Pool score {final_score}/100: {len(positions)} positions in {len(protocols)} protocols")

    return ScoreResult(
        score=final_score,
        factors=findings,
        recommendations=recommendations,
        narrative=(
            f"DeFi analysis shows {len(positions)} positions across {len(protocols)} protocols with total "
            f"value of ${total_value:,.0f}. {'. '.join(findings)}."
        ),
        details=details,
    )
