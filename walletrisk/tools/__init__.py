"""
Tool Framework for WALLETSEER narrative agents
"""
from typing import List, Optional

from langchain_core.tools import BaseTool

from walletrisk.api_clients.base import LookupService
from walletrisk.tools.search import build_web_search_tool

__all__ = [
    'build_web_search_tool',
    'get_research_tools',
]


def get_research_tools(lookup: Optional[LookupService]) -> List[BaseTool]:
    """Research tools available to the narrative agents; none without a lookup service"""
    return [build_web_search_tool(lookup)] if lookup else []
