"""
Common interface for news provider adapters.

Each adapter turns one external news API into normalized Article records.
Fetch methods raise ProviderRequestError on failure; the aggregator decides how
to report it.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as date_parser

from src.config.settings import CATEGORY_MAPPING, COUNTRY_MAPPING, ProviderSettings
from src.models.content import Article, generate_article_id
from src.services.http_client import HttpClient, ProviderRequestError


DEFAULT_TITLE = "No title available"


class ProviderAdapter(ABC):
    """Base class for provider adapters."""

    name: str = ""

    def __init__(self, settings: ProviderSettings, http_client: Optional[HttpClient] = None):
        self.settings = settings
        self.api_key = settings.api_key
        self.http = http_client or HttpClient.from_settings(settings)
        self.logger = logging.getLogger(__name__)

    async def close(self):
        await self.http.close_session()

    def map_category(self, category: Optional[str]) -> Optional[str]:
        """Standard category to this provider's value; unknown categories map to its general feed."""
        if not category:
            return None
        mapping = CATEGORY_MAPPING.get(category.lower()) or CATEGORY_MAPPING["general"]
        return mapping.get(self.name)

    def map_location(self, location: Optional[str]) -> Optional[str]:
        if not location:
            return None
        mapping = COUNTRY_MAPPING.get(location.lower())
        if mapping is None:
            return location.lower()
        return mapping.get(self.name, location.lower())

    @staticmethod
    def page_window(limit: int, offset: int) -> Tuple[int, int, int]:
        """
        Return (page_size, page, skip) for an offset-based request.

        Aligned offsets use ``page = offset // limit + 1``. Unaligned offsets fetch
        the first ``offset + limit`` items and skip the leading ``offset``.
        """
        limit = max(1, limit)
        offset = max(0, offset)
        if offset % limit == 0:
            return limit, offset // limit + 1, 0
        return offset + limit, 1, offset

    @staticmethod
    def parse_date(value: Any) -> datetime:
        """Parse a provider timestamp; missing or unparseable values become now (UTC)."""
        if value:
            try:
                parsed = date_parser.isoparse(str(value))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed
            except (ValueError, OverflowError):
                pass
        return datetime.now(timezone.utc)

    def build_article(
        self,
        title: Optional[str],
        url: Optional[str],
        published: Any = None,
        description: Optional[str] = None,
        content: Optional[str] = None,
        image_url: Optional[str] = None,
        category: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Article:
        """Create an Article with the standard defaults for missing fields."""
        title = (title or "").strip() or DEFAULT_TITLE
        url = url or ""
        description = description or ""
        return Article(
            id=generate_article_id(self.name, url, title),
            title=title,
            url=url,
            source=self.name,
            published_at=self.parse_date(published),
            description=description,
            content=content or description,
            category=category or "general",
            image_url=image_url or None,
            location=location,
        )

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderRequestError(f"{self.name} API key is not configured", code="MISSING_API_KEY")

    def _items(self, payload: Dict[str, Any], *path: str) -> List[Dict[str, Any]]:
        """Walk ``path`` into the payload and return the list found there."""
        node: Any = payload
        for key in path:
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if not isinstance(node, list):
            raise ProviderRequestError(
                f"Unexpected {self.name} response shape: missing {'.'.join(path)}",
                code="INVALID_RESPONSE",
            )
        return [item for item in node if isinstance(item, dict)]

    def _normalize_all(
        self, items: List[Dict[str, Any]], category: Optional[str], limit: int, skip: int = 0
    ) -> List[Article]:
        return [self.normalize_article(item, category) for item in items[skip:skip + limit]]

    @abstractmethod
    async def is_available(self) -> bool:
        ...

    @abstractmethod
    async def get_articles_by_category(
        self, category: str, location: Optional[str] = None, limit: int = 10, offset: int = 0
    ) -> List[Article]:
        ...

    @abstractmethod
    async def search_articles(
        self,
        query: str,
        category: Optional[str] = None,
        location: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Article]:
        ...

    @abstractmethod
    async def get_top_headlines(
        self, category: Optional[str] = None, location: Optional[str] = None, limit: int = 10
    ) -> List[Article]:
        ...

    @abstractmethod
    def normalize_article(self, raw: Dict[str, Any], category: Optional[str] = None) -> Article:
        ...
