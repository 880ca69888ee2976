"""
GNews adapter.
"""

from typing import Any, Dict, List, Optional

from src.models.content import Article
from src.services.http_client import ProviderRequestError
from src.services.provider_adapter import ProviderAdapter


class GNewsAdapter(ProviderAdapter):
    """Fetches articles from gnews.io (key sent as the ``token`` query parameter)."""

    name = "gnews"

    async def _articles(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._require_key()
        payload = await self.http.get_json(path, params)
        if payload.get("errors"):
            raise ProviderRequestError(f"GNews error: {payload['errors']}", code="INVALID_RESPONSE")
        return self._items(payload, "articles")

    async def get_articles_by_category(
        self, category: str, location: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[Article]:
        page_size, page, skip = self.page_window(limit, offset)
        params = {
            "category": self.map_category(category) or "general",
            "country": self.map_location(location),
            "max": page_size,
            "page": page,
            "lang": "en",
        }
        items = await self._articles("/top-headlines", params)
        return self._normalize_all(items, category, limit, skip)

    async def search_articles(
        self,
        query: str,
        category: Optional[str] = None,
        location: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Article]:
        page_size, page, skip = self.page_window(limit, offset)
        params = {
            "q": query,
            "country": self.map_location(location),
            "max": page_size,
            "page": page,
            "lang": "en",
        }
        items = await self._articles("/search", params)
        return self._normalize_all(items, category, limit, skip)

    async def get_top_headlines(
        self, category: Optional[str] = None, location: Optional[str] = None, limit: int = 10
    ) -> List[Article]:
        params = {
            "category": self.map_category(category) if category else None,
            "country": self.map_location(location),
            "max": limit,
            "lang": "en",
        }
        items = await self._articles("/top-headlines", params)
        return self._normalize_all(items, category, limit)

    def normalize_article(self, raw: Dict[str, Any], category: Optional[str] = None) -> Article:
        return self.build_article(
            title=raw.get("title"),
            url=raw.get("url"),
            published=raw.get("publishedAt"),
            description=raw.get("description"),
            content=raw.get("content") or raw.get("description"),
            image_url=raw.get("image"),
            category=category,
        )

    async def is_available(self) -> bool:
        return bool(self.api_key)
