"""
Asset risk scoring
Quantity-based: counts and categories of holdings drive the score, never
dollar values. Base 40 plus signed, individually capped adjustments.
"""
from typing import Dict, List, Tuple
import logging

from walletrisk.models.schemas import Holding, ScoreResult, WalletSnapshot, clamp_score
from walletrisk.utils.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

ASSET_BASE_SCORE = 40
EMPTY_ASSET_SCORE = 20

ASSET_WEIGHTS: Dict[str, float] = {
    "scam_token": 2,
    "scam_cap": 60,
    "dust_ratio": 0.8,  # share of suspicious tokens that must be dust for the discount
    "dust_discount": 0.5,
    "clean_portfolio": -5,
    "established_token": -2,
    "established_cap": 20,
    "verified_token": -1,
    "verified_cap": 15,
    "diversity_token": -1,
    "diversity_cap": 10,
    "limited_diversity": 5,
    "over_diversification_token": 1,
    "over_diversification_cap": 15,
    "high_token_count": 5,
    "multi_chain": -3,
    "defi_participation": -2,
}


def is_suspicious(holding: Holding, knowledge_base: KnowledgeBase) -> bool:
    """Established tokens are exempt from scam heuristics"""
    if holding.is_established:
        return False
    return (
        holding.possible_spam
        or holding.is_likely_airdrop
        or knowledge_base.matches_scam_pattern(holding.symbol)
    )


def scam_penalty(suspicious: List[Holding]) -> Tuple[float, bool]:
    """
    Penalty for suspected scam tokens.

    Capped first, then halved when at least 80% of them are dust, so
    unsolicited spam airdrops do not sink an otherwise clean wallet.

    Args:
        suspicious: Holdings already flagged as suspected scams

    Returns:
        Tuple of (penalty points, mostly_dust)
    """
    if not suspicious:
        return 0.0, False
    penalty = min(len(suspicious) * ASSET_WEIGHTS["scam_token"], ASSET_WEIGHTS["scam_cap"])
    dust_count = sum(1 for holding in suspicious if holding.is_dust)
    mostly_dust = dust_count >= len(suspicious) * ASSET_WEIGHTS["dust_ratio"]
    if mostly_dust:
        penalty *= ASSET_WEIGHTS["dust_discount"]
    return penalty, mostly_dust


def _empty_asset_result() -> ScoreResult:
    return ScoreResult(
        score=EMPTY_ASSET_SCORE,
        factors=["No token holdings detected across supported chains (no asset exposure)"],
        recommendations=["No asset exposure to assess; re-run analysis once the wallet holds tokens"],
        narrative=(
            "No native or token balances were found on any supported chain. "
            "Without holdings there is no asset-level exposure to scam or low-quality tokens."
        ),
        details={"total_tokens": 0, "scam_token_count": 0, "established_tokens": 0, "verified_tokens": 0},
        empty=True,
    )


def score_assets(snapshot: WalletSnapshot, knowledge_base: KnowledgeBase) -> ScoreResult:
    """
    Score a wallet's holdings.

    Factor order follows evaluation order: scam tokens, established bonus,
    verified bonus, diversity, token count, multi-chain, DeFi participation.
    """
    holdings = snapshot.holdings
    if not holdings:
        return _empty_asset_result()

    adjustment = 0.0
    factors: List[str] = []

    # 1. Suspected scam tokens
    suspicious = [h for h in holdings if is_suspicious(h, knowledge_base)]
    penalty, mostly_dust = scam_penalty(suspicious)
    if suspicious:
        adjustment += penalty
        if mostly_dust:
            factors.append(f"{len(suspicious)} suspected scam tokens (mostly dust/airdrops)")
        else:
            factors.append(f"{len(suspicious)} suspected scam tokens detected")
    else:
        adjustment += ASSET_WEIGHTS["clean_portfolio"]
        factors.append("No suspected scam tokens detected")

    # 2. Established tokens
    established = [h for h in holdings if h.is_established]
    if established:
        bonus = min(len(established) * abs(ASSET_WEIGHTS["established_token"]), ASSET_WEIGHTS["established_cap"])
        adjustment -= bonus
        factors.append(f"{len(established)} established tokens ({bonus:g} risk reduction)")

    # 3. Verified, not established
    verified = [h for h in holdings if h.verified and not h.is_established]
    if verified:
        bonus = min(len(verified) * abs(ASSET_WEIGHTS["verified_token"]), ASSET_WEIGHTS["verified_cap"])
        adjustment -= bonus
        factors.append(f"{len(verified)} additional verified tokens ({bonus:g} risk reduction)")

    # 4. Diversity of meaningful holdings
    meaningful = sum(1 for h in holdings if not h.is_dust and not h.is_likely_airdrop)
    if 5 <= meaningful <= 20:
        adjustment += ASSET_WEIGHTS["diversity_token"] * min(ASSET_WEIGHTS["diversity_cap"], meaningful)
        factors.append(f"Good token diversity ({meaningful} meaningful tokens)")
    elif meaningful < 3:
        adjustment += ASSET_WEIGHTS["limited_diversity"]
        factors.append(f"Limited token diversity ({meaningful} meaningful tokens)")

    # 5. Token count
    total = len(holdings)
    if total > 100:
        adjustment += min(
            (total - 100) * ASSET_WEIGHTS["over_diversification_token"],
            ASSET_WEIGHTS["over_diversification_cap"],
        )
        factors.append(f"Over-diversified portfolio ({total} total tokens)")
    elif total > 50:
        adjustment += ASSET_WEIGHTS["high_token_count"]
        factors.append(f"High token count ({total} total tokens)")

    # 6. Multi-chain and DeFi
    active_chains = snapshot.active_chains
    if len(active_chains) > 1:
        adjustment += ASSET_WEIGHTS["multi_chain"]
        factors.append(f"Multi-chain diversification ({len(active_chains)} chains)")
    if snapshot.positions:
        adjustment += ASSET_WEIGHTS["defi_participation"]
        factors.append(f"DeFi participation ({len(snapshot.positions)} positions)")

    score = clamp_score(ASSET_BASE_SCORE + adjustment)
    details = {
        "total_tokens": total,
        "scam_token_count": len(suspicious),
        "scam_penalty": penalty,
        "scam_tokens": [
            {
                "symbol": h.symbol,
                "chain": h.chain,
                "is_likely_airdrop": h.is_likely_airdrop,
                "is_dust": h.is_dust,
            }
            for h in suspicious
        ],
        "established_tokens": len(established),
        "verified_tokens": len(verified),
        "meaningful_tokens": meaningful,
        "active_chains": active_chains,
        "defi_positions": len(snapshot.positions),
        "adjustment": adjustment,
    }

    logger.info(
        f"🔍 Asset score {score}/100 (base {ASSET_BASE_SCORE} {adjustment:+g}): "
        f"{total} tokens, {len(suspicious)} suspicious, {len(established)} established"
    )

    return ScoreResult(
        score=score,
        factors=factors,
        recommendations=_asset_recommendations(details),
        narrative=_asset_narrative(details),
        details=details,
    )


def _asset_recommendations(details: Dict) -> List[str]:
    recommendations: List[str] = []
    scam_count = details["scam_token_count"]
    if scam_count > 20:
        recommendations.append(
            f"Consider cleaning up {scam_count} suspected scam tokens - many appear to be airdropped spam"
        )
    elif scam_count > 0:
        recommendations.append(f"Monitor {scam_count} suspected scam tokens for any unusual activity")

    if details["established_tokens"] < 3:
        recommendations.append("Consider adding more established tokens (ETH, USDC, BTC) for better stability")

    if details["total_tokens"] > 100:
        recommendations.append("Consider consolidating token holdings to reduce management complexity")
    elif details["total_tokens"] < 5:
        recommendations.append("Consider diversifying with additional quality tokens")

    if len(details["active_chains"]) <= 1:
        recommendations.append("Consider multi-chain diversification to reduce single-chain risk")
    return recommendations


def _asset_narrative(details: Dict) -> str:
    text = (
        f"Quantity-based analysis of wallet tokens. Portfolio contains {details['total_tokens']} tokens "
        f"across {max(1, len(details['active_chains']))} blockchain(s)."
    )
    if details["established_tokens"]:
        text += f" Includes {details['established_tokens']} established tokens providing stability."
    if details["scam_token_count"]:
        text += f" Detected {details['scam_token_count']} suspected scam tokens, likely airdropped spam."
    if details["verified_tokens"]:
        text += f" Contains {details['verified_tokens']} additional verified token contracts."
    return text
