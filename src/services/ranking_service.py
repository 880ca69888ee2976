"""
Ranking and diversification of enriched articles.

Blends recency with the enrichment score, adds a small boost for articles
from under-represented categories and topics, and assembles cross-category
top-story lists.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from src.models.content import Article, Enrichment
from src.pipeline.enrichment_pipeline import EnrichmentPipeline
from src.utils.error_monitoring import MonitoringService


DEFAULT_FINAL_SCORE = 5.0
DEFAULT_RECENCY_SCORE = 5.0

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def recency_score(published_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Score 0-10 from article age: newer articles score higher, anything older than a week scores 1."""
    if published_at is None:
        return DEFAULT_RECENCY_SCORE
    now = now or datetime.now(timezone.utc)
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    # future dates from skewed clocks count as brand new
    hours = max(0.0, (now - published_at).total_seconds() / 3600)

    if hours < 6:
        return 10 - hours / 3
    if hours < 24:
        return 8 - (hours - 6) / 9
    if hours < 72:
        return 6 - (hours - 24) / 24
    if hours < 168:
        return 4 - (hours - 72) / 48
    return 1.0


def _published_key(article: Article) -> datetime:
    published = article.published_at
    if published is None:
        return _EPOCH
    return published if published.tzinfo else published.replace(tzinfo=timezone.utc)


def _final_score_key(article: Article) -> float:
    return article.final_score if article.final_score is not None else 0.0


def merge_by_recency(groups: Iterable[List[Article]], limit: int) -> List[Article]:
    """Flatten, dedupe by url (or title when the url is empty) and sort newest first."""
    seen = set()
    unique: List[Article] = []
    for group in groups:
        for article in group:
            key = article.url or article.title
            if key in seen:
                continue
            seen.add(key)
            unique.append(article)
    unique.sort(key=_published_key, reverse=True)
    return unique[:limit]


class RankingService:
    """Ranks enriched articles and builds top-story lists."""

    def __init__(self, pipeline: EnrichmentPipeline, monitoring: Optional[MonitoringService] = None):
        self.pipeline = pipeline
        self.monitoring = monitoring or MonitoringService()
        self.logger = logging.getLogger(__name__)

    def _record(self, operation: str, start: float, success: bool = True) -> None:
        self.monitoring.record_timing("ranking", operation, (time.perf_counter() - start) * 1000.0, success)

    def rank_articles(
        self,
        articles: List[Article],
        recency_weight: float = 0.3,
        score_weight: float = 0.7,
        diversity_boost: float = 0.1,
        now: Optional[datetime] = None,
    ) -> List[Article]:
        """Return copies of ``articles`` carrying recency and combined scores, best first."""
        start = time.perf_counter()
        now = now or datetime.now(timezone.utc)

        category_counts = Counter(a.effective_category for a in articles if a.effective_category)
        topic_counts = Counter(topic for a in articles for topic in a.topics)

        ranked: List[Article] = []
        for article in articles:
            recency = recency_score(article.published_at, now)
            final_score = article.final_score if article.final_score is not None else DEFAULT_FINAL_SCORE
            combined = recency * recency_weight + final_score * score_weight

            if diversity_boost > 0:
                diversity = 0.0
                category = article.effective_category
                if category and category_counts[category]:
                    diversity += 1 / category_counts[category]
                topics = article.topics
                if topics:
                    diversity += sum(1 / topic_counts[t] for t in topics if topic_counts[t]) / len(topics)
                combined += diversity * diversity_boost

            enrichment = replace(article.enrichment or Enrichment(), recency_score=recency, combined_score=combined)
            ranked.append(replace(article, enrichment=enrichment))

        ranked.sort(key=lambda a: a.enrichment.combined_score, reverse=True)
        self._record("rank_articles", start)
        return ranked

    async def _top_for_category(self, category: str, articles: List[Article], slots: int) -> List[Article]:
        enriched = await self.pipeline.process_batch(articles)
        ranked = self.rank_articles(enriched)
        self.logger.debug(f"Category '{category}': {len(ranked)} ranked, taking {slots}")
        return ranked[:slots]

    async def get_top_stories(self, articles_by_category: Dict[str, List[Article]], limit: int = 15) -> List[Article]:
        """
        Pick the best stories across categories.

        Each category gets ``max(1, limit // n)`` slots. The picks are merged,
        deduplicated and ordered by final score. On any failure this degrades to
        the newest unique articles. Never raises.
        """
        start = time.perf_counter()
        if not articles_by_category or limit <= 0:
            return []

        try:
            slots = max(1, limit // len(articles_by_category))
            per_category = await asyncio.gather(*(
                self._top_for_category(category, articles, slots)
                for category, articles in articles_by_category.items()
            ))

            combined = [article for group in per_category for article in group]
            unique = await self.pipeline.deduplicate_articles(combined)
            unique.sort(key=_final_score_key, reverse=True)
            self._record("get_top_stories", start)
            return unique[:limit]

        except Exception as e:
            self.logger.error(f"❌ Top stories ranking failed, falling back to recency: {e}")
            self._record("get_top_stories", start, success=False)
            return merge_by_recency(articles_by_category.values(), limit)

    def filter_articles(
        self,
        articles: List[Article],
        min_score: float = 5.0,
        category: Optional[str] = None,
        exclude_sentiments: Iterable[str] = (),
        require_entities: Iterable[str] = (),
        exclude_keywords: Iterable[str] = (),
        include_keywords: Iterable[str] = (),
        min_published_date: Optional[datetime] = None,
    ) -> List[Article]:
        """Filter enriched articles; checks on missing data pass the article through."""
        start = time.perf_counter()
        exclude_sentiments = set(exclude_sentiments)
        require_entities = [e.lower() for e in require_entities]
        exclude_keywords = [k.lower() for k in exclude_keywords]
        include_keywords = [k.lower() for k in include_keywords]
        if min_published_date is not None and min_published_date.tzinfo is None:
            min_published_date = min_published_date.replace(tzinfo=timezone.utc)

        def keep(article: Article) -> bool:
            enrichment = article.enrichment or Enrichment()

            if article.final_score is not None and article.final_score < min_score:
                return False

            article_category = article.effective_category
            if category and article_category and article_category.lower() != category.lower():
                return False

            if exclude_sentiments and enrichment.sentiment in exclude_sentiments:
                return False

            if require_entities and enrichment.entities:
                entities = [e.lower() for e in enrichment.entities]
                if not any(req in e for req in require_entities for e in entities):
                    return False

            text = f"{article.title} {article.description or ''} {article.content or ''}".lower()
            if exclude_keywords and any(k in text for k in exclude_keywords):
                return False
            if include_keywords and not any(k in text for k in include_keywords):
                return False

            if min_published_date and article.published_at and _published_key(article) < min_published_date:
                return False

            return True

        filtered = [article for article in articles if keep(article)]
        self._record("filter_articles", start)
        return filtered
