"""
The Guardian Open Platform adapter.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from src.models.content import Article
from src.services.http_client import ProviderRequestError
from src.services.provider_adapter import ProviderAdapter


SHOW_FIELDS = "headline,trailText,bodyText,thumbnail,byline"
SEARCH_WINDOW_DAYS = 30


class GuardianAdapter(ProviderAdapter):
    """Fetches articles from content.guardianapis.com."""

    name = "guardian"

    def _params(self, page_size: int, page: int, order_by: str, location: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "page-size": page_size,
            "page": page,
            "show-fields": SHOW_FIELDS,
            "order-by": order_by,
        }
        api_location = self.map_location(location)
        if api_location:
            params["tag"] = f"world/{api_location}"
        return params

    async def _search(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._require_key()
        payload = await self.http.get_json("/search", params)
        return self._items(payload, "response", "results")

    async def get_articles_by_category(
        self, category: str, location: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[Article]:
        page_size, page, skip = self.page_window(limit, offset)
        params = self._params(page_size, page, "newest", location)
        params["section"] = self.map_category(category) or "news"

        items = await self._search(params)
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
        params = self._params(page_size, page, "relevance", location)
        params["q"] = query
        from_date = datetime.now(timezone.utc) - timedelta(days=SEARCH_WINDOW_DAYS)
        params["from-date"] = from_date.strftime("%Y-%m-%d")
        if category:
            params["section"] = self.map_category(category)

        items = await self._search(params)
        return self._normalize_all(items, category, limit, skip)

    async def get_top_headlines(
        self, category: Optional[str] = None, location: Optional[str] = None, limit: int = 10
    ) -> List[Article]:
        params = self._params(limit, 1, "newest", location)
        if category:
            params["section"] = self.map_category(category)

        items = await self._search(params)
        return self._normalize_all(items, category, limit)

    def normalize_article(self, raw: Dict[str, Any], category: Optional[str] = None) -> Article:
        fields = raw.get("fields") or {}
        trail_text = fields.get("trailText") or ""
        return self.build_article(
            title=raw.get("webTitle"),
            url=raw.get("webUrl"),
            published=raw.get("webPublicationDate"),
            description=trail_text,
            content=fields.get("bodyText") or trail_text,
            image_url=fields.get("thumbnail"),
            category=category or raw.get("sectionName"),
            location=fields.get("byline"),
        )

    async def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            payload = await self.http.get_json("/sections")
            return (payload.get("response") or {}).get("status") == "ok"
        except ProviderRequestError as e:
            if e.status in (401, 403):
                self.logger.warning(f"❌ Guardian rejected the API key: {e}")
                return False
            self.logger.warning(f"⚠️ Guardian availability check failed, assuming available: {e}")
            return True
        except Exception as e:
            self.logger.warning(f"⚠️ Guardian availability check failed, assuming available: {e}")
            return True
