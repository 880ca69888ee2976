#!/usr/bin/env python3
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from src.config.settings import AppConfig, load_config
from src.models.content import Connection
from src.pipeline.content_aggregator import ContentAggregator
from src.utils.logging_config import PerformanceTracker, setup_logging


class NewsService:
    """Command-line facade over the content aggregator."""

    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or load_config()
        self.aggregator = ContentAggregator.from_config(self.config)
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        await self.aggregator.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aggregator.cleanup()

    async def health_check(self) -> Dict[str, bool]:
        results = await self.aggregator.refresh_availability()
        ai = self.aggregator.ai
        results["ai"] = bool(ai and await ai.test_connection())
        return results


def print_connection(connection: Connection, as_json: bool = False) -> None:
    if as_json:
        print(json.dumps(connection.to_dict(), indent=2, ensure_ascii=False))
        return

    print(f"📰 {len(connection.edges)} of {connection.total_count} articles")
    print("=" * 60)
    for index, article in enumerate(connection.articles, start=1):
        published = article.published_at.strftime("%Y-%m-%d %H:%M") if article.published_at else "unknown date"
        score = f" | score {article.final_score:.2f}" if article.final_score is not None else ""
        print(f"{index:2}. {article.title}")
        print(f"    {article.source} | {published}{score}")
        if article.enrichment and article.enrichment.summary:
            print(f"    {article.enrichment.summary}")
        print(f"    {article.url}")

    if connection.page_info.has_next_page:
        print(f"\nNext page: --after {connection.page_info.end_cursor}")
    if connection.errors:
        print("\n⚠️ Provider errors:")
        for error in connection.errors:
            retry = "retryable" if error.retryable else "not retryable"
            print(f"  {error.source} [{error.code}, {retry}]: {error.message}")


def print_metrics(metrics: Dict[str, Any]) -> None:
    print("📊 Performance Metrics")
    print("=" * 50)
    print(f"Cache hit rate: {metrics['cache_hit_rate'] * 100:.1f}%")
    print(f"Average processing time: {metrics['average_processing_time_ms']:.1f}ms")
    print(f"Total requests: {metrics['total_requests']}")
    print(f"AI calls: {metrics['api_calls']}")

    cache = metrics["cache"]
    print(f"\nCache: {cache['memory_size']}/{cache['max_size']} items")
    print(f"  hits {cache['hits']} | misses {cache['misses']} | evictions {cache['evictions']}")


def _split(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


async def main():
    """Main entry point"""
    import argparse
    parser = argparse.ArgumentParser(description="News aggregation and enrichment service")
    parser.add_argument('--category', help='Fetch articles for a category')
    parser.add_argument('--search', metavar='KEYWORD', help='Search articles by keyword')
    parser.add_argument('--headlines', action='store_true', help='Fetch top headlines')
    parser.add_argument('--top-stories', metavar='CATEGORIES', nargs='?', const='',
                        help='Enriched top stories across comma-separated categories')
    parser.add_argument('--location', help='Location code (us, gb, ca, au, in)')
    parser.add_argument('--limit', type=int, default=10, help='Page size (default: 10)')
    parser.add_argument('--after', help='Cursor of the previous page')
    parser.add_argument('--order', help='Comma-separated provider priority order')
    parser.add_argument('--json', action='store_true', help='Print results as JSON')

    parser.add_argument('--health', action='store_true', help='Provider and AI health check')
    parser.add_argument('--cache-stats', action='store_true', help='Show cache and performance statistics')
    args = parser.parse_args()

    config = load_config()
    setup_logging(log_level=config.log_level, log_dir=config.log_dir)
    order = _split(args.order)

    try:
        async with NewsService(config) as service:
            aggregator = service.aggregator

            if args.health:
                health = await service.health_check()
                print("Service Health Status:")
                for name, status in health.items():
                    print(f"  {name}: {'✅' if status else '❌'}")
                return

            if args.search:
                with PerformanceTracker(f"search '{args.search}'"):
                    connection = await aggregator.search_articles(
                        args.search, args.category, args.location, args.limit, args.after, order
                    )
            elif args.top_stories is not None:
                with PerformanceTracker("top stories"):
                    connection = await aggregator.fetch_top_stories_across_categories(
                        _split(args.top_stories), args.location, args.limit, order
                    )
            elif args.headlines:
                with PerformanceTracker("top headlines"):
                    connection = await aggregator.fetch_top_headlines(
                        args.category, args.location, args.limit, order
                    )
            elif args.category:
                with PerformanceTracker(f"category '{args.category}'"):
                    connection = await aggregator.fetch_by_category(
                        args.category, args.location, args.limit, args.after, order
                    )
            elif args.cache_stats:
                connection = None
            else:
                parser.print_help()
                return

            if connection is not None:
                print_connection(connection, args.json)
            if args.cache_stats:
                print()
                print_metrics(aggregator.get_performance_metrics())

    except KeyboardInterrupt:
        print("\n⚠️ Shutting down gracefully...")
    except Exception as e:  # noqa: BLE001
        print(f"❌ Fatal error: {e}")
        logging.exception("Fatal error in main")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
