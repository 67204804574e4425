"""Web search through the Brave Search API."""

from typing import List, Optional

from pydantic import BaseModel

from voice_gateway.errors import ServiceError
from voice_gateway.services.http import HttpService

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class SearchResult(BaseModel):
    title: str
    description: Optional[str] = None
    url: Optional[str] = None


class BraveSearchClient(HttpService):
    service_name = "web search"

    def __init__(self, api_key: Optional[str], http_client=None):
        super().__init__(http_client)
        self.api_key = api_key

    async def search(self, query: str, count: int = 5) -> List[SearchResult]:
        if not self.api_key:
            raise ServiceError("web search is not configured")
        data = await self._json(
            "GET",
            BRAVE_SEARCH_URL,
            params={"q": query, "count": count},
            headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
        )
        results = ((data or {}).get("web") or {}).get("results") or []
        return [SearchResult.model_validate(r) for r in results if r.get("title")]
