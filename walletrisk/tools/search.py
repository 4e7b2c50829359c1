"""
Web Search Tool for the narrative agents
Wraps an injected LookupService as a langchain tool the model can call.
"""
from typing import Any, Dict, List
import logging

from langchain_core.tools import BaseTool, tool

from walletrisk.api_clients.base import LookupService

logger = logging.getLogger(__name__)

MAX_RESULTS_CAP = 10


def build_web_search_tool(lookup: LookupService) -> BaseTool:
    """Bind a LookupService into a `web_search` tool"""

    @tool
    async def web_search(query: str, max_results: int = 3) -> List[Dict[str, Any]]:
        """
        Search the web for information about a DeFi protocol, token or contract.

        Use this when a protocol or token is not in the knowledge base and you
        need audit history, exploit reports, TVL or reputation.

        Args:
            query: Search query string (be specific, e.g. "X protocol security audit")
            max_results: Maximum number of results to return (default 3)

        Returns:
            List of search results with title, url, snippet and published_date
        """
        try:
            logger.info(f"🔍 Web search: '{query}' (max_results={max_results})")
            results = await lookup.search(query, max_results=max(1, min(max_results, MAX_RESULTS_CAP)))
            logger.info(f"✅ Found {len(results)} results for '{query}'")
            return [result.model_dump() for result in results]
        except Exception as e:
            logger.error(f"❌ Web search failed: {e}")
            return []

    return web_search
