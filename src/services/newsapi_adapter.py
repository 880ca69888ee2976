"""
NewsAPI.org adapter.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from src.models.content import Article
from src.services.http_client import ProviderRequestError
from src.services.provider_adapter import ProviderAdapter


SEARCH_WINDOW_DAYS = 7


class NewsAPIAdapter(ProviderAdapter):
    """Fetches articles from newsapi.org (key sent in the X-Api-Key header)."""

    name = "newsapi"

    async def _articles(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._require_key()
        payload = await self.http.get_json(path, params)
        if payload.get("status") == "error":
            raise ProviderRequestError(
                f"NewsAPI error: {payload.get('message', 'unknown error')}",
                code=str(payload.get("code") or "ERROR"),
            )
        return self._items(payload, "articles")

    async def get_articles_by_category(
        self, category: str, location: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[Article]:
        page_size, page, skip = self.page_window(limit, offset)
        params = {
            "category": self.map_category(category) or "general",
            "country": self.map_location(location),
            "pageSize": page_size,
            "page": page,
            "language": "en",
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
        from_date = datetime.now(timezone.utc) - timedelta(days=SEARCH_WINDOW_DAYS)

        # /everything has no category or country filter, so both go into the query
        q = query
        api_category = self.map_category(category) if category else None
        if api_category and api_category != "general":
            q += f" AND {api_category}"

        params = {
            "q": q,
            "sortBy": "relevancy",
            "from": from_date.strftime("%Y-%m-%d"),
            "pageSize": page_size,
            "page": page,
            "language": "en",
        }
        items = await self._articles("/everything", params)
        return self._normalize_all(items, category, limit, skip)

    async def get_top_headlines(
        self, category: Optional[str] = None, location: Optional[str] = None, limit: int = 10
    ) -> List[Article]:
        params = {
            "category": self.map_category(category) if category else None,
            "country": self.map_location(location) or ("us" if not category else None),
            "pageSize": limit,
            "page": 1,
            "language": "en",
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
            image_url=raw.get("urlToImage"),
            category=category,
            location=raw.get("country"),
        )

    async def is_available(self) -> bool:
        return bool(self.api_key)
