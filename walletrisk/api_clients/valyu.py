"""
Valyu Search Client
Web research for unknown protocols and tokens, used by the narrative agents.
"""
import logging
from typing import Any, List, Optional

import httpx

from config.settings import Settings
from walletrisk.api_clients.base import LookupService, SearchSnippet

logger = logging.getLogger(__name__)


class ValyuSearchClient(LookupService):
    """LookupService over the Valyu deep-search REST API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or Settings()
        self.api_key = api_key or self.settings.VALYU_API_KEY
        self.enabled = bool(self.api_key) or http_client is not None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.settings.VALYU_BASE_URL,
            headers={
                "x-api-key": self.api_key or "",
                "Content-Type": "application/json",
            },
            timeout=self.settings.VALYU_TIMEOUT,
        )
        if not self.enabled:
            logger.info("Valyu search disabled (no API key provided)")

    async def close(self) -> None:
        await self.http_client.aclose()

    async def search(self, query: str, max_results: int = 5) -> List[SearchSnippet]:
        """
        Perform a web search.

        Args:
            query: Search query string
            max_results: Max number of results

        Returns:
            List of SearchSnippet, [] when disabled or on any HTTP error
        """
        if not self.enabled:
            return []
        try:
            response = await self.http_client.post(
                "/deepsearch",
                json={"query": query, "search_type": "all", "max_num_results": max_results},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Valyu search failed for '{query}': {e}")
            return []
        return self._parse_search_results(payload)[:max_results]

    @staticmethod
    def _parse_search_results(payload: Any) -> List[SearchSnippet]:
        results = payload.get("results", []) if isinstance(payload, dict) else payload
        if not isinstance(results, list):
            return []

        snippets = []
        for item in results:
            if not isinstance(item, dict):
                continue
            content = item.get("snippet") or item.get("content") or item.get("description") or ""
            snippets.append(
                SearchSnippet(
                    title=str(item.get("title", "")),
                    url=str(item.get("url", "")),
                    snippet=str(content)[:500],
                    published_date=str(item.get("date", item.get("published_date", "")) or ""),
                )
            )
        return snippets

