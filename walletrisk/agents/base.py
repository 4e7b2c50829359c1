"""
Reasoning service seam for the narrative agents.
Provides the ReasoningService interface, the langchain-openai implementation
and helpers for reading model replies.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
import json
import logging

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings

logger = logging.getLogger(__name__)


class ReasoningReply(BaseModel):
    """One model turn: final text and/or requested tool calls"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str = ""
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    message: Optional[AIMessage] = None

    def as_message(self) -> AIMessage:
        """The assistant message to append to the conversation history"""
        if self.message is not None:
            return self.message
        return AIMessage(content=self.text, tool_calls=self.tool_calls)


class ReasoningService(ABC):
    """
    External reasoning (LLM) service.

    The caller owns any tool-calling loop: it passes back the accumulated
    history (assistant turns and tool results) on every call.
    """

    @abstractmethod
    async def complete(
        self,
        system_context: str,
        user_payload: str,
        tools: Optional[Sequence[BaseTool]] = None,
        history: Optional[List[BaseMessage]] = None,
    ) -> ReasoningReply:
        """Run one model turn"""


class OpenAIReasoningService(ReasoningService):
    """ReasoningService backed by langchain-openai ChatOpenAI"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model_name: Optional[str] = None,
        temperature: Optional[float] = None,
        llm: Optional[ChatOpenAI] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.model_name = model_name or self.settings.OPENAI_MODEL
        self.logger = logging.getLogger(self.__class__.__name__)
        self.llm = llm or ChatOpenAI(
            model=self.model_name,
            temperature=self.settings.LLM_TEMPERATURE if temperature is None else temperature,
            openai_api_key=self.settings.OPENAI_API_KEY,
            request_timeout=self.settings.LLM_TIMEOUT,
        )
        self.stats = {"total_calls": 0, "tool_call_turns": 0}
        self.logger.info(f"{self.__class__.__name__} initialized with model {self.model_name}")

    async def complete(
        self,
        system_context: str,
        user_payload: str,
        tools: Optional[Sequence[BaseTool]] = None,
        history: Optional[List[BaseMessage]] = None,
    ) -> ReasoningReply:
        llm = self.llm.bind_tools(list(tools)) if tools else self.llm
        messages: List[BaseMessage] = [
            SystemMessage(content=system_context),
            HumanMessage(content=user_payload),
            *(history or []),
        ]
        self.stats["total_calls"] += 1
        response = await llm.ainvoke(messages)
        tool_calls = list(getattr(response, "tool_calls", None) or [])
        if tool_calls:
            self.stats["tool_call_turns"] += 1
        return ReasoningReply(text=message_text(response), tool_calls=tool_calls, message=response)


def message_text(message: BaseMessage) -> str:
    """Flatten string or block-list message content into text"""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts: List[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict):
                if block.get("type") == "text":
                    parts.append(str(block.get("text", "")))
                elif block.get("type") == "json":
                    parts.append(json.dumps(block.get("json", {})))
        if parts:
            return " ".join(parts).strip()
    return str(content)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the outermost JSON object out of a model reply.

    Tolerates markdown fences and prose around the object.

    Raises:
        ValueError: when no JSON object can be decoded
    """
    if not text:
        raise ValueError("Empty reply")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object found in reply")
    data = json.loads(text[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("Reply JSON is not an object")
    return data
