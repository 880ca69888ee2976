import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.config.settings import AIServiceSettings, FeatureFlags, PipelineSettings, ProviderSettings
from src.models.content import Article, generate_article_id
from src.pipeline.enrichment_pipeline import EnrichmentPipeline
from src.services.ai_service import AIService
from src.services.cache_service import CacheService
from src.services.provider_adapter import ProviderAdapter


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_article(
    title: str = "Sample headline",
    url: Optional[str] = "https://example.com/1",
    source: str = "newsapi",
    hours_old: Optional[float] = 1,
    description: str = "",
    content: Optional[str] = None,
    category: Optional[str] = "general",
    now: datetime = NOW,
) -> Article:
    published = now - timedelta(hours=hours_old) if hours_old is not None else None
    return Article(
        id=generate_article_id(source, url, title),
        title=title,
        url=url or "",
        source=source,
        published_at=published,
        description=description,
        content=content,
        category=category,
    )


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(ProviderAdapter):
    """In-memory provider: returns canned articles or raises a canned error."""

    def __init__(
        self,
        name: str,
        articles: Optional[List[Article]] = None,
        error: Optional[Exception] = None,
        available: bool = True,
        delay: float = 0.0,
    ):
        self.name = name
        settings = ProviderSettings(name=name, base_url="https://provider.test", api_key="test-key")
        http = MagicMock()
        http.close_session = AsyncMock()
        super().__init__(settings, http_client=http)
        self.articles = articles or []
        self.error = error
        self.available = available
        self.delay = delay
        self.calls: List[Dict] = []

    async def _respond(self, method: str, limit: int, **kwargs) -> List[Article]:
        self.calls.append({"method": method, "limit": limit, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.articles[:limit])

    async def is_available(self) -> bool:
        return self.available

    async def get_articles_by_category(self, category, location=None, limit=10, offset=0):
        return await self._respond("category", limit, category=category, location=location)

    async def search_articles(self, query, category=None, location=None, limit=10, offset=0):
        return await self._respond("search", limit, query=query, category=category)

    async def get_top_headlines(self, category=None, location=None, limit=10):
        return await self._respond("headlines", limit, category=category)

    def normalize_article(self, raw, category=None):
        return self.build_article(raw.get("title"), raw.get("url"), category=category)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheService(default_ttl=60, max_size=100, cleanup_interval=300, clock=clock)


@pytest.fixture
def features():
    return FeatureFlags()


@pytest.fixture
def local_ai(features):
    """AI service without an API key: every call resolves through local heuristics."""
    return AIService(AIServiceSettings(api_key=None, min_seconds_between_calls=0), features)


@pytest.fixture
def pipeline(local_ai, cache, features):
    return EnrichmentPipeline(local_ai, cache, features, PipelineSettings(batch_size=5, batch_delay_seconds=0))
