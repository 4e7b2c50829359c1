"""
Tests for FinalAggregator
Risk-level banding, the arithmetic fallback, alert synthesis and the LLM path
"""
import json

import pytest

from walletrisk.agents.aggregator import (
    HIGH_RISK_ALERT_MESSAGE,
    MAX_ALERTS,
    FinalAggregator,
    describe_risk_level,
    risk_level_for,
)
from walletrisk.agents.base import ReasoningReply
from walletrisk.models.schemas import (
    ChainSnapshot,
    Holding,
    NetWorth,
    Position,
    RiskIndicators,
    SubAnalysisResult,
    TradingPnL,
    WalletSnapshot,
)

from conftest import MIXER, WALLET, FakeReasoningService, json_reply


def sub(score: int) -> SubAnalysisResult:
    return SubAnalysisResult(narrative=f"scored {score}", risk_score=score)


def token(symbol: str, chain: str = "ethereum", **flags) -> Holding:
    return Holding(
        chain=chain,
        contract_address=f"0x{symbol.lower():0>40}"[:42],
        symbol=symbol,
        raw_balance="5000000000000000000",
        balance=5.0,
        **flags,
    )


def wallet(indicators: RiskIndicators = None, chains=None, positions=None) -> WalletSnapshot:
    chains = chains or {"ethereum": ChainSnapshot(chain="ethereum", native_balance=1.0)}
    return WalletSnapshot(
        address=WALLET,
        chains=chains,
        holdings=[h for c in chains.values() for h in c.holdings],
        positions=positions or [],
        risk_indicators=indicators or RiskIndicators(),
    )


class TestRiskLevels:
    """Score to risk-level banding"""

    @pytest.mark.parametrize(
        "score,level",
        [
            (0, "very-low"),
            (20, "very-low"),
            (21, "low"),
            (40, "low"),
            (41, "medium"),
            (60, "medium"),
            (61, "high"),
            (80, "high"),
            (81, "very-high"),
            (100, "very-high"),
        ],
    )
    def test_band_boundaries(self, score, level):
        assert risk_level_for(score) == level

    def test_describe_risk_level(self):
        summary = describe_risk_level("very-high")
        assert summary.status == "Very High Risk"
        assert summary.urgency == "critical"
        assert summary.description.startswith("Very High Risk - Dangerous")
        assert describe_risk_level("very-low").urgency == "none"


class TestFallbackAggregation:
    """Arithmetic fallback when no reasoning service is available"""

    @pytest.mark.asyncio
    async def test_missing_analysis_is_excluded_not_zero(self):
        report = await FinalAggregator().aggregate(sub(30), None, sub(40))
        assert report.overall_risk_score == 35
        assert report.confidence_score == 50
        assert report.risk_level == "low"
        assert report.source == "deterministic-fallback"
        assert report.summary == "Automated risk analysis based on assets, pools analysis. Overall risk score: 35/100."
        assert report.key_risks == ["Limited data analysis fallback"]
        assert report.multi_chain_info is None

    @pytest.mark.asyncio
    async def test_no_analyses(self):
        report = await FinalAggregator().aggregate(None, None, None)
        assert report.overall_risk_score == 50
        assert report.confidence_score == 30
        assert report.risk_level == "medium"

    @pytest.mark.asyncio
    async def test_all_three_analyses(self):
        report = await FinalAggregator().aggregate(sub(11), sub(12), sub(14))
        assert report.overall_risk_score == 12
        assert report.confidence_score == 70
        assert report.alerts == []

    @pytest.mark.asyncio
    async def test_high_score_alert(self):
        report = await FinalAggregator().aggregate(sub(75), sub(75), sub(75))
        assert [(a.severity, a.message) for a in report.alerts] == [("high", HIGH_RISK_ALERT_MESSAGE)]

    @pytest.mark.asyncio
    async def test_very_high_score_alert_is_critical(self):
        report = await FinalAggregator().aggregate(sub(90), sub(90), None)
        assert report.alerts[0].severity == "critical"

    @pytest.mark.asyncio
    async def test_mixer_alert_comes_first(self):
        indicators = RiskIndicators(
            interacted_with_mixers=True,
            mixer_addresses=[MIXER],
            high_value_transactions=True,
            new_wallet=True,
        )
        report = await FinalAggregator().aggregate(sub(90), sub(90), sub(90), wallet(indicators))
        severities = [a.severity for a in report.alerts]
        assert severities == ["critical", "critical", "medium", "low"]
        assert MIXER in report.alerts[0].message


class TestMultiChainInfo:
    """Cross-chain summary built from the snapshot"""

    def test_only_active_chains_listed(self, kb):
        chains = {
            "ethereum": ChainSnapshot(
                chain="ethereum",
                holdings=[token("SAFEMOON")],
                token_count=1,
            ),
            "base": ChainSnapshot(chain="base", native_balance=0.2),
            "polygon": ChainSnapshot(chain="polygon"),
        }
        positions = [
            Position(chain="ethereum", protocol="aave", kind="lending"),
            Position(chain="base", protocol="aave", kind="lending"),
        ]
        info = FinalAggregator(knowledge_base=kb).build_multi_chain_info(wallet(chains=chains, positions=positions))

        assert info.total_chains_active == 2
        assert info.chains_with_activity == ["ethereum", "base"]
        assert info.chain_specific_risks == {"ethereum": ["1 suspected scam tokens on ethereum"]}
        assert any("2 chains" in risk for risk in info.cross_chain_risks)
        assert any("aave" in risk for risk in info.cross_chain_risks)

    def test_narrated_risks_for_inactive_chains_dropped(self, kb):
        info = FinalAggregator(knowledge_base=kb).build_multi_chain_info(
            wallet(),
            cross_chain_risks=["bridge exposure"],
            chain_specific_risks={"ethereum": ["gas spikes"], "solana": ["not even supported"]},
        )
        assert info.chains_with_activity == ["ethereum"]
        assert info.cross_chain_risks == ["bridge exposure"]
        assert info.chain_specific_risks == {"ethereum": ["gas spikes"]}


class TestReasonedAggregation:
    """Final synthesis through the reasoning service"""

    @pytest.mark.asyncio
    async def test_reply_is_clamped_and_level_derived(self):
        reasoning = FakeReasoningService(
            [
                json_reply(
                    overall_risk_score=150,
                    confidence_score=-3,
                    summary="Dangerous wallet",
                    key_risks=["mixer usage"],
                    recommendations=["avoid"],
                    risk_level="very-low",
                    alerts=[{"severity": "apocalyptic", "message": "Check bridges"}, {"severity": "high"}],
                )
            ]
        )
        report = await FinalAggregator(reasoning).aggregate(sub(10), sub(20), sub(30), wallet())

        assert report.source == "llm"
        assert report.overall_risk_score == 100
        assert report.confidence_score == 0
        assert report.risk_level == "very-high"
        assert report.summary == "Dangerous wallet"
        assert report.key_risks == ["mixer usage"]
        assert [(a.severity, a.message) for a in report.alerts] == [
            ("critical", HIGH_RISK_ALERT_MESSAGE),
            ("medium", "Check bridges"),
        ]

        payload = json.loads(reasoning.calls[0]["user_payload"])
        assert set(payload["analyses"]) == {"assets", "protocols", "pools"}
        assert payload["wallet"]["active_chains"] == ["ethereum"]

    @pytest.mark.asyncio
    async def test_payload_carries_net_worth_and_trading_pnl(self):
        snapshot = wallet()
        snapshot.net_worth = NetWorth(total_usd=6250.0, per_chain={"ethereum": 6250.0})
        snapshot.profit_loss = TradingPnL(realized_profit_usd=-120.5, trade_count=14, per_chain={"ethereum": -120.5})
        reasoning = FakeReasoningService([json_reply(overall_risk_score=30, summary="ok")])
        await FinalAggregator(reasoning).aggregate(sub(10), sub(20), sub(30), snapshot)

        metrics = json.loads(reasoning.calls[0]["user_payload"])["wallet"]
        assert metrics["net_worth_usd"] == 6250.0
        assert metrics["trading_pnl"]["realized_profit_usd"] == -120.5
        assert metrics["trading_pnl"]["trade_count"] == 14

    @pytest.mark.asyncio
    async def test_alerts_capped(self):
        alerts = [{"severity": "low", "message": f"alert {i}"} for i in range(15)]
        reasoning = FakeReasoningService([json_reply(overall_risk_score=30, summary="ok", alerts=alerts)])
        report = await FinalAggregator(reasoning).aggregate(sub(30), sub(30), sub(30))
        assert len(report.alerts) == MAX_ALERTS

    @pytest.mark.asyncio
    async def test_missing_fields_get_defaults(self):
        reasoning = FakeReasoningService([json_reply(key_risks="not a list")])
        report = await FinalAggregator(reasoning).aggregate(sub(10), None, None)
        assert report.overall_risk_score == 50
        assert report.confidence_score == 50
        assert report.summary == "Risk analysis completed with limited data."
        assert report.key_risks == []

    @pytest.mark.asyncio
    async def test_garbage_reply_falls_back(self):
        reasoning = FakeReasoningService([ReasoningReply(text="Sorry, I can't do that.")])
        report = await FinalAggregator(reasoning).aggregate(sub(30), sub(40), sub(50))
        assert report.source == "deterministic-fallback"
        assert report.overall_risk_score == 40

    @pytest.mark.asyncio
    async def test_service_error_falls_back(self):
        reasoning = FakeReasoningService([ConnectionError("rate limited")])
        report = await FinalAggregator(reasoning).aggregate(sub(30), None, None)
        assert report.source == "deterministic-fallback"
        assert report.overall_risk_score == 30
        assert report.confidence_score == 30
