"""
Tests for the narrative augmenter, its fallback wrapper and the web_search tool
"""
import json

import pytest
from langchain_core.messages import AIMessage, ToolMessage

from walletrisk.agents.base import ReasoningReply, extract_json_object, message_text
from walletrisk.agents.narrative import (
    NarrativeAugmenter,
    NarrativeFormatError,
    NarrativeIterationLimitError,
    fallback_result,
    score_with_narrative_fallback,
)
from walletrisk.models.schemas import ScoreResult, SubAnalysisResult
from walletrisk.tools.search import build_web_search_tool

from conftest import FakeLookup, FakeReasoningService, json_reply


def baseline(score: int = 35, empty: bool = False) -> ScoreResult:
    return ScoreResult(
        score=score,
        factors=["3 established tokens (6 risk reduction)"],
        recommendations=["Consider multi-chain diversification to reduce single-chain risk"],
        narrative="Quantity-based analysis of wallet tokens.",
        empty=empty,
    )


def search_call(query: str, call_id: str = "call_1") -> ReasoningReply:
    return ReasoningReply(tool_calls=[{"name": "web_search", "args": {"query": query}, "id": call_id}])


class TestScoreWithNarrativeFallback:
    """The shared deterministic-then-narrative wrapper"""

    @pytest.mark.asyncio
    async def test_empty_baseline_skips_narration(self):
        async def narrate(_):
            raise AssertionError("should not narrate empty data")

        result = await score_with_narrative_fallback("pools", lambda: baseline(0, empty=True), narrate)
        assert result.source == "deterministic"
        assert result.risk_score == 0

    @pytest.mark.asyncio
    async def test_without_narrator_uses_fallback(self):
        result = await score_with_narrative_fallback("assets", lambda: baseline(35))
        assert result.source == "deterministic-fallback"
        assert result.risk_score == 35
        assert result.key_findings == ["3 established tokens (6 risk reduction)"]
        assert result.narrative == "Quantity-based analysis of wallet tokens."

    @pytest.mark.asyncio
    async def test_narrator_failure_falls_back(self, caplog):
        async def narrate(_):
            raise TimeoutError("model timed out")

        result = await score_with_narrative_fallback("protocols", lambda: baseline(12), narrate)
        assert result.source == "deterministic-fallback"
        assert result.risk_score == 12
        assert "narrative failed" in caplog.text

    @pytest.mark.asyncio
    async def test_narrator_result_passes_through(self):
        async def narrate(base):
            return SubAnalysisResult(narrative="model view", risk_score=base.score + 5, source="llm")

        result = await score_with_narrative_fallback("assets", lambda: baseline(20), narrate)
        assert result.source == "llm"
        assert result.risk_score == 25

    @pytest.mark.asyncio
    async def test_scorer_errors_propagate(self):
        def broken():
            raise KeyError("details")

        with pytest.raises(KeyError):
            await score_with_narrative_fallback("assets", broken)


class TestNarrativeAugmenter:
    """Test suite for NarrativeAugmenter"""

    @pytest.mark.asyncio
    async def test_direct_reply_is_clamped(self, kb):
        reasoning = FakeReasoningService([json_reply(narrative="Risky wallet", risk_score=150, key_findings=["x"])])
        augmenter = NarrativeAugmenter(reasoning, knowledge_base=kb)

        result = await augmenter.narrate("assets", {"holdings": []}, baseline())
        assert result.source == "llm"
        assert result.risk_score == 100
        assert result.narrative == "Risky wallet"
        assert result.key_findings == ["x"]

        call = reasoning.calls[0]
        assert "Deterministic baseline score: 35/100" in call["system_context"]
        assert json.loads(call["user_payload"])["baseline"]["score"] == 35
        assert call["tools"] == []

    @pytest.mark.asyncio
    async def test_tool_loop_feeds_results_back(self, kb):
        lookup = FakeLookup()
        reasoning = FakeReasoningService(
            [search_call("mystery farm audit"), json_reply(narrative="Researched", risk_score=44)]
        )
        augmenter = NarrativeAugmenter(reasoning, knowledge_base=kb, lookup=lookup)

        result = await augmenter.narrate("protocols", {}, baseline())
        assert result.risk_score == 44
        assert lookup.queries == ["mystery farm audit"]
        assert [t.name for t in reasoning.calls[0]["tools"]] == ["web_search"]

        history = reasoning.calls[1]["history"]
        assert isinstance(history[0], AIMessage)
        assert isinstance(history[1], ToolMessage)
        assert history[1].tool_call_id == "call_1"
        assert "Result for mystery farm audit" in history[1].content
        assert augmenter.get_stats()["total_tool_calls"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool_reports_error_and_continues(self, kb):
        reasoning = FakeReasoningService(
            [
                ReasoningReply(tool_calls=[{"name": "price_feed", "args": {}, "id": "c9"}]),
                json_reply(narrative="Done", risk_score=10),
            ]
        )
        result = await NarrativeAugmenter(reasoning, knowledge_base=kb).narrate("pools", {}, baseline())
        assert result.risk_score == 10
        assert "Unknown tool" in reasoning.calls[1]["history"][1].content

    @pytest.mark.asyncio
    async def test_iteration_cap(self, kb):
        reasoning = FakeReasoningService(handler=lambda *args: search_call("again"))
        augmenter = NarrativeAugmenter(reasoning, knowledge_base=kb, lookup=FakeLookup(), max_iterations=3)

        with pytest.raises(NarrativeIterationLimitError):
            await augmenter.narrate("protocols", {}, baseline())
        assert len(reasoning.calls) == 3
        stats = augmenter.get_stats()
        assert stats["max_iterations_reached"] == 1
        assert stats["failed_calls"] == 1

    @pytest.mark.asyncio
    async def test_iteration_cap_falls_back_when_wrapped(self, kb):
        reasoning = FakeReasoningService(handler=lambda *args: search_call("again"))
        augmenter = NarrativeAugmenter(reasoning, knowledge_base=kb, lookup=FakeLookup(), max_iterations=2)

        result = await score_with_narrative_fallback(
            "protocols", lambda: baseline(18), lambda base: augmenter.narrate("protocols", {}, base)
        )
        assert result.source == "deterministic-fallback"
        assert result.risk_score == 18

    @pytest.mark.parametrize(
        "text",
        [
            "I cannot help with that",
            json.dumps({"risk_score": 40}),
            json.dumps({"narrative": "ok", "risk_score": "high"}),
            json.dumps({"narrative": "ok", "risk_score": True}),
            json.dumps({"narrative": "   ", "risk_score": 40}),
        ],
    )
    def test_malformed_replies_rejected(self, text):
        with pytest.raises(NarrativeFormatError):
            NarrativeAugmenter.parse_reply(text)

    def test_fenced_reply_with_legacy_key(self):
        text = '```json\n{"gpt_analysis": "Legacy key", "risk_score": -7.4}\n```'
        result = NarrativeAugmenter.parse_reply(text)
        assert result.narrative == "Legacy key"
        assert result.risk_score == 0

    @pytest.mark.asyncio
    async def test_research_unknown_protocols(self, kb):
        lookup = FakeLookup()
        augmenter = NarrativeAugmenter(FakeReasoningService(), knowledge_base=kb, lookup=lookup)

        research = await augmenter.research_unknown_protocols(["a", "b", "c", "d"])
        assert list(research) == ["a", "b", "c"]
        assert len(lookup.queries) == 9
        assert all(len(snippets) == 3 for snippets in research.values())
        assert "a DeFi protocol security audit" in lookup.queries

    @pytest.mark.asyncio
    async def test_research_failures_yield_nothing(self, kb):
        augmenter = NarrativeAugmenter(FakeReasoningService(), knowledge_base=kb, lookup=FakeLookup(fail=True))
        assert await augmenter.research_unknown_protocols(["a"]) == {"a": []}

    @pytest.mark.asyncio
    async def test_research_without_lookup(self, kb):
        augmenter = NarrativeAugmenter(FakeReasoningService(), knowledge_base=kb)
        assert await augmenter.research_unknown_protocols(["a"]) == {}


def test_fallback_result_synthesizes_narrative():
    base = ScoreResult(score=61, factors=["a", "b"])
    result = fallback_result(base)
    assert result.narrative == "Deterministic risk analysis. a. b"
    assert result.risk_score == 61


class TestReplyHelpers:
    """Parsing helpers in agents.base"""

    def test_extract_json_object_tolerates_prose(self):
        assert extract_json_object('Here you go: {"a": 1} thanks') == {"a": 1}

    def test_extract_json_object_errors(self):
        with pytest.raises(ValueError):
            extract_json_object("")
        with pytest.raises(ValueError):
            extract_json_object("no braces")

    def test_message_text_flattens_blocks(self):
        message = AIMessage(content=[{"type": "text", "text": "hello"}, {"type": "text", "text": "world"}])
        assert message_text(message) == "hello world"

    def test_as_message_builds_tool_call_message(self):
        reply = search_call("q")
        message = reply.as_message()
        assert message.tool_calls[0]["name"] == "web_search"
        assert message.tool_calls[0]["args"] == {"query": "q"}


class TestWebSearchTool:
    """The langchain tool wrapped around a LookupService"""

    @pytest.mark.asyncio
    async def test_returns_snippet_dicts(self):
        lookup = FakeLookup()
        tool = build_web_search_tool(lookup)
        results = await tool.ainvoke({"query": "aave audit", "max_results": 50})
        assert tool.name == "web_search"
        assert results[0]["title"] == "Result for aave audit"
        assert lookup.queries == ["aave audit"]

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_empty(self):
        tool = build_web_search_tool(FakeLookup(fail=True))
        assert await tool.ainvoke({"query": "x"}) == []
