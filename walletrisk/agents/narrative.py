"""
Narrative Augmenter
Sends a deterministic, scored payload to the reasoning service for a prose
assessment (optionally with bounded web research), and falls back to the
deterministic result whenever that fails.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import json
import logging
import math

from langchain_core.messages import BaseMessage, ToolMessage
from langchain_core.tools import BaseTool

from walletrisk.agents.base import ReasoningService, extract_json_object
from walletrisk.api_clients.base import LookupService
from walletrisk.models.schemas import AnalysisKind, ResultSource, ScoreResult, SubAnalysisResult, clamp_score
from walletrisk.tools import get_research_tools
from walletrisk.utils.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)


class NarrativeError(Exception):
    """Reasoning service produced no usable result"""


class NarrativeFormatError(NarrativeError):
    """Reply could not be parsed into a narrative and numeric score"""


class NarrativeIterationLimitError(NarrativeError):
    """Tool-calling loop did not finish within the iteration cap"""


ANALYSIS_FOCUS: Dict[str, str] = {
    "assets": (
        "You assess the token portfolio of a crypto wallet. Focus on QUANTITIES and categories of tokens, "
        "not dollar values. Airdropped dust spam should not destroy an otherwise good score."
    ),
    "protocols": (
        "You assess how a crypto wallet interacts with smart contracts and DeFi protocols: trust tiers, "
        "high-risk transactions, failed transactions and protocol diversification."
    ),
    "pools": (
        "You assess a crypto wallet's DeFi pool positions: protocol tiers, position kinds, concentration "
        "and cross-chain exposure."
    ),
}

REPLY_FORMAT = (
    "After any research, reply with JSON only:\n"
    '{"narrative": "analysis text", "risk_score": 0-100, '
    '"key_findings": ["..."], "recommendations": ["..."]}'
)


def fallback_result(baseline: ScoreResult, source: ResultSource = "deterministic-fallback") -> SubAnalysisResult:
    """Synthesize a SubAnalysisResult purely from deterministic factors/details"""
    return SubAnalysisResult(
        narrative=baseline.narrative or "Deterministic risk analysis. " + ". ".join(baseline.factors),
        risk_score=baseline.score,
        key_findings=list(baseline.factors),
        recommendations=list(baseline.recommendations),
        source=source,
    )


async def score_with_narrative_fallback(
    kind: str,
    deterministic_fn: Callable[[], ScoreResult],
    narrative_fn: Optional[Callable[[ScoreResult], Awaitable[SubAnalysisResult]]] = None,
) -> SubAnalysisResult:
    """
    Run a deterministic scorer, then try to augment it with a narrative.

    Args:
        kind: Sub-analysis name, for logging
        deterministic_fn: Pure scorer producing the baseline
        narrative_fn: Async narrator given the baseline; None skips narration

    Returns:
        The narrated result, or the deterministic fallback. Narrative failures
        never propagate; scorer failures do.
    """
    baseline = deterministic_fn()
    if baseline.empty:
        logger.info(f"{kind}: no data, using fixed deterministic result (score {baseline.score})")
        return fallback_result(baseline, source="deterministic")
    if narrative_fn is None:
        return fallback_result(baseline)

    try:
        return await narrative_fn(baseline)
    except Exception as e:
        logger.warning(f"⚠️ {kind} narrative failed, using deterministic fallback: {type(e).__name__}: {e}")
        return fallback_result(baseline)


class NarrativeAugmenter:
    """
    Drives the reasoning service through a bounded tool loop.

    Features:
    - Knowledge base and deterministic baseline seeded into the system context
    - Optional `web_search` tool over an injected LookupService
    - Hard iteration cap; exceeding it is a failure
    - Score always clamped to [0, 100]
    """

    def __init__(
        self,
        reasoning: ReasoningService,
        knowledge_base: Optional[KnowledgeBase] = None,
        lookup: Optional[LookupService] = None,
        max_iterations: int = 5,
    ) -> None:
        self.reasoning = reasoning
        self.knowledge_base = knowledge_base or KnowledgeBase.default()
        self.lookup = lookup
        self.max_iterations = max_iterations
        self.tools: List[BaseTool] = get_research_tools(lookup)
        self.logger = logging.getLogger(self.__class__.__name__)

        self.stats = {
            "total_calls": 0,
            "successful_calls": 0,
            "failed_calls": 0,
            "total_tool_calls": 0,
            "max_iterations_reached": 0,
        }

    def get_system_prompt(self, kind: AnalysisKind, baseline: ScoreResult) -> str:
        knowledge = json.dumps(self.knowledge_base.to_prompt_context())
        return (
            f"{ANALYSIS_FOCUS.get(kind, ANALYSIS_FOCUS['assets'])}\n\n"
            f"Knowledge base: {knowledge}\n\n"
            f"Deterministic baseline score: {baseline.score}/100. "
            f"Key factors: {'; '.join(baseline.factors[:5])}. "
            "Refer to the baseline and adjust only with clear evidence.\n\n"
            f"{REPLY_FORMAT}"
        )

    @staticmethod
    def build_user_payload(kind: AnalysisKind, payload: Dict[str, Any], baseline: ScoreResult) -> str:
        return json.dumps(
            {
                "analysis": kind,
                "baseline": {
                    "score": baseline.score,
                    "factors": baseline.factors,
                    "details": baseline.details,
                },
                "data": payload,
            },
            default=str,
        )

    async def narrate(self, kind: AnalysisKind, payload: Dict[str, Any], baseline: ScoreResult) -> SubAnalysisResult:
        """
        Ask the reasoning service for a narrative assessment.

        Raises:
            NarrativeIterationLimitError: tool loop still running after max_iterations turns
            NarrativeFormatError: final reply lacks a narrative or numeric score
        """
        self.stats["total_calls"] += 1
        system_context = self.get_system_prompt(kind, baseline)
        user_payload = self.build_user_payload(kind, payload, baseline)
        history: List[BaseMessage] = []

        try:
            for iteration in range(1, self.max_iterations + 1):
                reply = await self.reasoning.complete(
                    system_context, user_payload, tools=self.tools or None, history=history
                )
                if not reply.tool_calls:
                    result = self.parse_reply(reply.text)
                    self.stats["successful_calls"] += 1
                    self.logger.info(
                        f"✅ {kind} narrative complete after {iteration} round(s): score {result.risk_score}"
                    )
                    return result

                self.logger.info(f"{kind} round {iteration}: {len(reply.tool_calls)} tool call(s)")
                history.append(reply.as_message())
                history.extend(await self._run_tool_calls(reply.tool_calls))

            self.stats["max_iterations_reached"] += 1
            raise NarrativeIterationLimitError(
                f"{kind} narrative exceeded {self.max_iterations} reasoning rounds"
            )
        except Exception:
            self.stats["failed_calls"] += 1
            raise

    async def _run_tool_calls(self, tool_calls: List[Dict[str, Any]]) -> List[ToolMessage]:
        tools_by_name = {t.name: t for t in self.tools}
        messages: List[ToolMessage] = []
        for call in tool_calls:
            name = call.get("name", "unknown")
            call_id = call.get("id") or name
            selected = tools_by_name.get(name)
            if selected is None:
                output: Any = {"error": f"Unknown tool: {name}"}
            else:
                self.stats["total_tool_calls"] += 1
                try:
                    output = await selected.ainvoke(call.get("args", {}))
                except Exception as e:
                    self.logger.warning(f"Tool {name} failed: {e}")
                    output = {"error": str(e)}
            messages.append(ToolMessage(content=json.dumps(output, default=str), tool_call_id=call_id, name=name))
        return messages

    @staticmethod
    def parse_reply(text: str) -> SubAnalysisResult:
        """Validate the model's JSON; narrative string and numeric score are required"""
        try:
            data = extract_json_object(text)
        except ValueError as e:
            raise NarrativeFormatError(f"Unparseable reply: {e}") from e

        narrative = data.get("narrative") or data.get("gpt_analysis") or data.get("analysis")
        if not isinstance(narrative, str) or not narrative.strip():
            raise NarrativeFormatError("Reply is missing a narrative string")

        score = data.get("risk_score")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
            raise NarrativeFormatError(f"Reply risk_score is not numeric: {score!r}")

        def string_list(value: Any) -> List[str]:
            if not isinstance(value, list):
                return []
            return [str(item) for item in value if item not in (None, "")]

        return SubAnalysisResult(
            narrative=narrative.strip(),
            risk_score=clamp_score(score),
            key_findings=string_list(data.get("key_findings")),
            recommendations=string_list(data.get("recommendations")),
            source="llm",
        )

    async def research_unknown_protocols(
        self, protocols: List[str], max_protocols: int = 3, results_per_query: int = 2
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Pre-fetch reputation research for protocols missing from the knowledge base.

        Three queries per protocol run concurrently; failed queries yield nothing.
        """
        if not self.lookup or not protocols:
            return {}

        selected = protocols[:max_protocols]
        queries = {
            protocol: [
                f"{protocol} DeFi protocol security audit",
                f"{protocol} cryptocurrency protocol risks",
                f"{protocol} protocol TVL reputation",
            ]
            for protocol in selected
        }
        flat = [(protocol, query) for protocol, qs in queries.items() for query in qs]
        results = await asyncio.gather(
            *(self.lookup.search(query, max_results=results_per_query) for _, query in flat),
            return_exceptions=True,
        )

        research: Dict[str, List[Dict[str, Any]]] = {protocol: [] for protocol in selected}
        for (protocol, query), result in zip(flat, results):
            if isinstance(result, Exception):
                self.logger.warning(f"Research query '{query}' failed: {result}")
                continue
            research[protocol].extend(snippet.model_dump() for snippet in result)
        return research

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
