import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.config.settings import (
    CATEGORIES,
    DEFAULT_TOP_STORY_CATEGORIES,
    LOCATIONS,
    SOURCES,
    AggregatorSettings,
    AppConfig,
)
from src.models.content import (
    Article,
    Connection,
    InvalidCursorError,
    ProviderError,
    build_connection,
    decode_cursor,
    deduplicate_by_url,
)
from src.pipeline.enrichment_pipeline import EnrichmentPipeline
from src.services.ai_service import AIService
from src.services.cache_service import CacheService
from src.services.provider_adapter import ProviderAdapter
from src.services.provider_factory import ProviderFactory
from src.services.ranking_service import RankingService, merge_by_recency
from src.utils.error_monitoring import ErrorHandler, MonitoringService


ProviderCall = Callable[[ProviderAdapter, int], Awaitable[List[Article]]]

AGGREGATION_OPERATIONS = (
    "fetch_by_category",
    "search_articles",
    "fetch_top_headlines",
    "aggregate_across_categories",
    "fetch_top_stories",
)


@dataclass
class ScanResult:
    """Deduplicated articles from one pass over the provider order."""
    articles: List[Article] = field(default_factory=list)
    errors: List[ProviderError] = field(default_factory=list)
    complete: bool = True  # every provider was consulted without an early stop


class ContentAggregator:
    """
    Multi-provider news aggregation with priority fallback.

    Providers are consulted one at a time in priority order until enough
    articles are collected. A failing provider is reported in the result's
    errors and never hides articles from the others.
    """

    def __init__(
        self,
        providers: Dict[str, ProviderAdapter],
        cache: CacheService,
        settings: Optional[AggregatorSettings] = None,
        ai: Optional[AIService] = None,
        pipeline: Optional[EnrichmentPipeline] = None,
        ranker: Optional[RankingService] = None,
        error_handler: Optional[ErrorHandler] = None,
        monitoring: Optional[MonitoringService] = None,
    ) -> None:
        self.providers = providers
        self.cache = cache
        self.settings = settings or AggregatorSettings()
        self.ai = ai
        self.pipeline = pipeline
        self.monitoring = monitoring or MonitoringService()
        self.ranker = ranker or (RankingService(pipeline, self.monitoring) if pipeline else None)
        self.error_handler = error_handler or ErrorHandler()

        # Replaced wholesale by refresh_availability; empty means "assume available"
        self._availability: Dict[str, bool] = {}
        self._availability_task: Optional[asyncio.Task] = None

        self.logger = logging.getLogger(__name__)
        self._initialized = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "ContentAggregator":
        """Wire up providers, cache, AI, enrichment and ranking from configuration."""
        cache = CacheService.from_settings(config.cache)
        providers = ProviderFactory.create_from_environment(provider_settings=config.providers)
        ai = AIService(config.ai, config.features)
        pipeline = EnrichmentPipeline(ai, cache, config.features, config.pipeline)
        return cls(
            providers=providers,
            cache=cache,
            settings=config.aggregator,
            ai=ai,
            pipeline=pipeline,
        )

    async def initialize(self) -> None:
        """Start the cache sweep, take a first availability snapshot and schedule refreshes."""
        if self._initialized:
            return

        self.cache.start()
        await self.refresh_availability()
        if self.settings.availability_refresh_seconds > 0:
            self._availability_task = asyncio.get_running_loop().create_task(self._availability_loop())
        self._initialized = True
        self.logger.info(f"Content aggregator initialized with providers: {', '.join(self.providers) or 'none'}")

    async def cleanup(self) -> None:
        """Stop background tasks and close provider sessions."""
        if self._availability_task is not None:
            self._availability_task.cancel()
            try:
                await self._availability_task
            except asyncio.CancelledError:
                pass
            self._availability_task = None

        await self.cache.dispose()
        for name, adapter in self.providers.items():
            try:
                await adapter.close()
            except Exception as e:
                self.logger.warning(f"Error closing provider '{name}': {e}")
        self._initialized = False

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

    # Availability

    async def refresh_availability(self) -> Dict[str, bool]:
        names = list(self.providers)
        results = await asyncio.gather(
            *(self.providers[name].is_available() for name in names),
            return_exceptions=True,
        )

        snapshot: Dict[str, bool] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                self.logger.warning(f"⚠️ Availability check for '{name}' raised, assuming available: {result}")
                snapshot[name] = True
            else:
                snapshot[name] = bool(result)

        self._availability = snapshot
        unavailable = [name for name, ok in snapshot.items() if not ok]
        if unavailable:
            self.logger.info(f"Providers currently unavailable: {', '.join(unavailable)}")
        return dict(snapshot)

    async def _availability_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.availability_refresh_seconds)
            try:
                await self.refresh_availability()
            except Exception as e:
                self.logger.error(f"Provider availability refresh failed: {e}")

    def get_availability(self) -> Dict[str, bool]:
        return {name: self._availability.get(name, True) for name in self.providers}

    def resolve_order(self, preferred_order: Optional[List[str]] = None) -> List[str]:
        """
        Provider names to try, in priority order.

        Unknown names are dropped. Providers marked unavailable are skipped
        unless that would leave nothing to try.
        """
        order: List[str] = []
        for name in preferred_order or self.settings.default_order:
            name = name.lower()
            if name in self.providers and name not in order:
                order.append(name)

        snapshot = self._availability
        available = [name for name in order if snapshot.get(name, True)]
        return available or order

    # Provider scans

    async def _collect(
        self,
        operation: str,
        call: ProviderCall,
        limit: int,
        preferred_order: Optional[List[str]] = None,
        lookahead: int = 0,
    ) -> ScanResult:
        """
        Consult providers sequentially until ``limit`` articles are collected.

        Each provider is asked for ``limit + lookahead`` so a page can tell
        whether more results follow; the early stop only looks at ``limit``.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.request_deadline
        order = self.resolve_order(preferred_order)

        collected: List[Article] = []
        errors: List[ProviderError] = []
        complete = True

        for index, name in enumerate(order):
            remaining = deadline - loop.time()
            if remaining <= 0:
                for skipped in order[index:]:
                    errors.append(ProviderError(
                        source=skipped,
                        message="Aggregation deadline exceeded before this provider was attempted",
                        code="DEADLINE_EXCEEDED",
                        retryable=True,
                    ))
                complete = False
                self.logger.warning(f"⚠️ {operation}: deadline reached, skipped {', '.join(order[index:])}")
                break

            adapter = self.providers[name]
            start = time.perf_counter()
            try:
                articles = await asyncio.wait_for(
                    call(adapter, limit + lookahead),
                    timeout=min(self.settings.provider_timeout, remaining),
                )
            except Exception as e:
                errors.append(self.error_handler.to_provider_error(e, name, operation))
                self.monitoring.record_timing(name, operation, (time.perf_counter() - start) * 1000.0, False, str(e))
                self.logger.warning(f"❌ {operation}: provider '{name}' failed: {e}")
                continue

            self.monitoring.record_timing(name, operation, (time.perf_counter() - start) * 1000.0)
            collected.extend(articles)
            self.logger.info(f"✓ {operation}: '{name}' returned {len(articles)} articles ({len(collected)}/{limit})")

            if len(collected) >= limit:
                # Providers may hold more than was asked for
                complete = False
                break

        return ScanResult(articles=deduplicate_by_url(collected), errors=errors, complete=complete)

    @staticmethod
    def _scan_key(operation: str, params: Dict[str, Any], preferred_order: Optional[List[str]]) -> str:
        payload = dict(params, order=preferred_order or None)
        return f"articles:{operation}:{json.dumps(payload, sort_keys=True, default=str)}"

    def _index_articles(self, articles: List[Article]) -> None:
        for article in articles:
            self.cache.set(f"article:{article.id}", article, content_type="articles")

    async def _scan(
        self,
        operation: str,
        params: Dict[str, Any],
        call: ProviderCall,
        window: int,
        preferred_order: Optional[List[str]] = None,
        lookahead: int = 0,
    ) -> ScanResult:
        """Return at least ``window`` articles when available, reusing an earlier scan of the same query."""
        key = self._scan_key(operation, params, preferred_order)
        cached: Optional[ScanResult] = self.cache.get(key)
        if cached is not None and (cached.complete or len(cached.articles) >= window):
            self.logger.debug(f"Serving {operation} from scan cache ({len(cached.articles)} articles)")
            return cached

        result = await self._collect(operation, call, window, preferred_order, lookahead)
        if result.articles:
            self.cache.set(key, result, content_type="articles")
            self._index_articles(result.articles)
        return result

    # Pagination

    @staticmethod
    def _cursor_position(after: Optional[str]) -> Optional[Dict[str, Any]]:
        return decode_cursor(after) if after else None

    @staticmethod
    def _offset_after(articles: List[Article], cursor: Optional[Dict[str, Any]]) -> int:
        if cursor is None:
            return 0
        for position, article in enumerate(articles):
            if article.id == cursor.get("id"):
                return position + 1
        return cursor["index"] + 1

    @staticmethod
    def _invalid_cursor(after: str) -> Connection:
        return Connection.empty([ProviderError(
            source="aggregator",
            message=f"Invalid pagination cursor: {after}",
            code="INVALID_CURSOR",
            retryable=False,
        )])

    async def _paginate(
        self,
        operation: str,
        params: Dict[str, Any],
        call: ProviderCall,
        first: int,
        after: Optional[str],
        preferred_order: Optional[List[str]],
    ) -> Connection:
        self.monitoring.record_request()
        start = time.perf_counter()
        first = max(0, first)
        try:
            try:
                cursor = self._cursor_position(after)
            except InvalidCursorError:
                self.logger.warning(f"{operation}: rejected invalid cursor")
                return self._invalid_cursor(after)

            window = (cursor["index"] + 1 if cursor else 0) + first
            # One extra article per provider tells whether a next page exists
            scan = await self._scan(operation, params, call, window, preferred_order, lookahead=1)
            offset = self._offset_after(scan.articles, cursor)
            connection = build_connection(scan.articles, offset, first, scan.errors)
            self.monitoring.record_timing("aggregator", operation, (time.perf_counter() - start) * 1000.0)
            return connection

        except Exception as e:
            self.monitoring.record_timing("aggregator", operation, (time.perf_counter() - start) * 1000.0, False, str(e))
            return Connection.empty([self.error_handler.to_provider_error(e, "aggregator", operation)])

    async def fetch_by_category(
        self,
        category: str,
        location: Optional[str] = None,
        first: int = 10,
        after: Optional[str] = None,
        preferred_order: Optional[List[str]] = None,
    ) -> Connection:
        async def call(adapter: ProviderAdapter, limit: int) -> List[Article]:
            return await adapter.get_articles_by_category(category, location, limit, 0)

        params = {"category": category, "location": location}
        return await self._paginate("fetch_by_category", params, call, first, after, preferred_order)

    async def search_articles(
        self,
        keyword: str,
        category: Optional[str] = None,
        location: Optional[str] = None,
        first: int = 10,
        after: Optional[str] = None,
        preferred_order: Optional[List[str]] = None,
    ) -> Connection:
        keyword = (keyword or "").strip()
        if not keyword:
            return Connection.empty([ProviderError(
                source="aggregator",
                message="Search keyword must not be empty",
                code="INVALID_QUERY",
                retryable=False,
            )])

        async def call(adapter: ProviderAdapter, limit: int) -> List[Article]:
            return await adapter.search_articles(keyword, category, location, limit, 0)

        params = {"keyword": keyword, "category": category, "location": location}
        return await self._paginate("search_articles", params, call, first, after, preferred_order)

    async def fetch_top_headlines(
        self,
        category: Optional[str] = None,
        location: Optional[str] = None,
        first: int = 10,
        preferred_order: Optional[List[str]] = None,
    ) -> Connection:
        async def call(adapter: ProviderAdapter, limit: int) -> List[Article]:
            return await adapter.get_top_headlines(category, location, limit)

        params = {"category": category, "location": location}
        return await self._paginate("fetch_top_headlines", params, call, first, None, preferred_order)

    async def _scan_categories(
        self,
        operation: str,
        categories: List[str],
        location: Optional[str],
        per_category: int,
        preferred_order: Optional[List[str]],
        lookahead: int = 0,
    ) -> Dict[str, ScanResult]:
        async def scan_one(category: str) -> ScanResult:
            async def call(adapter: ProviderAdapter, limit: int) -> List[Article]:
                return await adapter.get_articles_by_category(category, location, limit, 0)

            params = {"category": category, "location": location}
            return await self._scan("fetch_by_category", params, call, per_category, preferred_order, lookahead)

        results = await asyncio.gather(*(scan_one(c) for c in categories), return_exceptions=True)

        scans: Dict[str, ScanResult] = {}
        for category, result in zip(categories, results):
            if isinstance(result, Exception):
                error = self.error_handler.to_provider_error(result, "aggregator", operation)
                scans[category] = ScanResult(errors=[error], complete=False)
            else:
                scans[category] = result
        return scans

    async def aggregate_across_categories(
        self,
        categories: List[str],
        location: Optional[str] = None,
        first: int = 10,
        after: Optional[str] = None,
        preferred_order: Optional[List[str]] = None,
    ) -> Connection:
        """Fan a category fetch out over ``categories`` and merge the results."""
        self.monitoring.record_request()
        start = time.perf_counter()
        try:
            try:
                cursor = self._cursor_position(after)
            except InvalidCursorError:
                return self._invalid_cursor(after)

            categories = list(dict.fromkeys(categories or DEFAULT_TOP_STORY_CATEGORIES))
            window = (cursor["index"] + 1 if cursor else 0) + max(0, first)
            scans = await self._scan_categories(
                "aggregate_across_categories", categories, location, window, preferred_order, lookahead=1
            )

            merged = deduplicate_by_url([a for scan in scans.values() for a in scan.articles])
            errors = [e for scan in scans.values() for e in scan.errors]
            offset = self._offset_after(merged, cursor)
            self.monitoring.record_timing(
                "aggregator", "aggregate_across_categories", (time.perf_counter() - start) * 1000.0
            )
            return build_connection(merged, offset, first, errors)

        except Exception as e:
            return Connection.empty([self.error_handler.to_provider_error(e, "aggregator", "aggregate_across_categories")])

    async def fetch_top_stories_across_categories(
        self,
        categories: Optional[List[str]] = None,
        location: Optional[str] = None,
        first: int = 15,
        preferred_order: Optional[List[str]] = None,
    ) -> Connection:
        """
        Enriched, ranked top stories drawn from several categories.

        Each category is fetched with room for a few candidates per slot; the
        ranker picks and orders the final list. Without an enrichment pipeline
        the newest unique articles are returned instead.
        """
        self.monitoring.record_request()
        start = time.perf_counter()
        try:
            categories = list(dict.fromkeys(categories or DEFAULT_TOP_STORY_CATEGORIES))
            first = max(0, first)
            slots = max(1, first // len(categories))
            per_category = max(slots * 2, 5)

            scans = await self._scan_categories(
                "fetch_top_stories", categories, location, per_category, preferred_order
            )
            errors = [e for scan in scans.values() for e in scan.errors]
            articles_by_category = {c: scan.articles for c, scan in scans.items() if scan.articles}

            if not articles_by_category:
                stories: List[Article] = []
            elif self.ranker is not None:
                stories = await self.ranker.get_top_stories(articles_by_category, first)
            else:
                stories = merge_by_recency(articles_by_category.values(), first)

            self._index_articles(stories)
            self.monitoring.record_timing("aggregator", "fetch_top_stories", (time.perf_counter() - start) * 1000.0)
            return build_connection(stories, 0, first, errors)

        except Exception as e:
            return Connection.empty([self.error_handler.to_provider_error(e, "aggregator", "fetch_top_stories")])

    # Catalog and lookup

    def get_categories(self) -> List[Dict[str, str]]:
        return [dict(c) for c in CATEGORIES]

    def get_locations(self) -> List[Dict[str, str]]:
        return [dict(loc) for loc in LOCATIONS]

    def get_sources(self) -> List[Dict[str, Any]]:
        availability = self._availability
        return [
            {
                **source,
                "configured": source["id"] in self.providers,
                "available": source["id"] in self.providers and availability.get(source["id"], True),
            }
            for source in SOURCES
        ]

    def get_article(self, article_id: str) -> Optional[Article]:
        """Look up an article seen in a recent aggregation; enriched copies win over raw ones."""
        return self.cache.get(f"article:{article_id}")

    # Metrics

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {
            "cache_hit_rate": self.cache.hit_rate,
            "average_processing_time_ms": self.monitoring.average_duration(list(AGGREGATION_OPERATIONS)),
            "total_requests": self.monitoring.total_requests,
            "api_calls": self.ai.get_api_usage()["total_calls"] if self.ai else 0,
            "api_usage": self.ai.get_api_usage() if self.ai else None,
            "cache": self.cache.get_stats(),
            "errors": self.error_handler.get_error_statistics(),
        }

    def reset_metrics(self) -> None:
        self.monitoring.reset()
        self.cache.reset_stats()
        if self.ai:
            self.ai.reset_api_usage()
