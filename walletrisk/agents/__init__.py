"""WALLETSEER Agent Modules"""
from walletrisk.agents.base import OpenAIReasoningService, ReasoningReply, ReasoningService
from walletrisk.agents.narrative import (
    NarrativeAugmenter,
    NarrativeError,
    NarrativeFormatError,
    NarrativeIterationLimitError,
    score_with_narrative_fallback,
)
from walletrisk.agents.aggregator import FinalAggregator, describe_risk_level, risk_level_for

__all__ = [
    'ReasoningService',
    'ReasoningReply',
    'OpenAIReasoningService',
    'NarrativeAugmenter',
    'NarrativeError',
    'NarrativeFormatError',
    'NarrativeIterationLimitError',
    'score_with_narrative_fallback',
    'FinalAggregator',
    'describe_risk_level',
    'risk_level_for',
]
