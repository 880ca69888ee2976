import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

from src.config.settings import FeatureFlags, PipelineSettings
from src.models.content import Article
from src.services.ai_service import AIService, ExtractedInfo
from src.services.cache_service import CacheService
from src.utils.logging_config import log_pipeline_metrics


DEFAULT_IMPORTANCE = 5.0
DEFAULT_RELEVANCE = 50.0


@dataclass
class PipelineState:
    """Mutable per-article state handed from stage to stage."""
    article: Article
    summary: Optional[str] = None
    category: Optional[str] = None
    info: Optional[ExtractedInfo] = None
    relevance_score: Optional[float] = None
    final_score: Optional[float] = None
    completed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def identity(self) -> str:
        return self.article.identity

    @property
    def scoring_category(self) -> str:
        return self.category or self.article.category or "general"


Stage = Callable[[PipelineState], Awaitable[PipelineState]]


def calculate_final_score(importance: Optional[float], relevance_score: Optional[float]) -> float:
    importance = DEFAULT_IMPORTANCE if importance is None else importance
    relevance_score = DEFAULT_RELEVANCE if relevance_score is None else relevance_score
    return importance * 0.4 + relevance_score * 0.6 / 10


def _score_key(article: Article) -> float:
    return article.final_score if article.final_score is not None else 0.0


class EnrichmentPipeline:
    """
    Enriches articles through summarize -> categorize -> extract_info -> calculate_score.

    Every stage is cached per article identity and can be switched off with a
    feature flag. A failing stage is recorded on the state and the remaining
    stages still run with whatever data is available.
    """

    def __init__(
        self,
        ai: AIService,
        cache: CacheService,
        features: Optional[FeatureFlags] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.ai = ai
        self.cache = cache
        self.features = features or FeatureFlags()
        self.settings = settings or PipelineSettings()
        self.logger = logging.getLogger(__name__)

        self.stages: List[Tuple[str, Stage]] = [
            ("summarize", self._summarize),
            ("categorize", self._categorize),
            ("extract_info", self._extract_info),
            ("calculate_score", self._calculate_score),
        ]

    async def _summarize(self, state: PipelineState) -> PipelineState:
        if not self.features.summarization:
            return state
        article = state.article
        state.summary = await self.cache.get_or_compute(
            f"summary:{state.identity}",
            lambda: self.ai.summarize(article),
            content_type="summary",
        )
        return state

    async def _categorize(self, state: PipelineState) -> PipelineState:
        if not self.features.categorization:
            return state
        article = state.article
        state.category = await self.cache.get_or_compute(
            f"category:{state.identity}",
            lambda: self.ai.categorize(article),
            content_type="category",
        )
        return state

    async def _extract_info(self, state: PipelineState) -> PipelineState:
        if not (self.features.entity_extraction or self.features.sentiment_analysis):
            return state
        article = state.article
        state.info = await self.cache.get_or_compute(
            f"info:{state.identity}",
            lambda: self.ai.extract_info(article),
            content_type="entities",
        )
        return state

    async def _calculate_score(self, state: PipelineState) -> PipelineState:
        if not self.features.relevance_scoring:
            return state
        article = state.article
        category = state.scoring_category
        state.relevance_score = await self.cache.get_or_compute(
            f"relevance:{state.identity}:{category}",
            lambda: self.ai.score_relevance(article, category),
            content_type="relevance",
        )
        importance = state.info.importance if state.info else None
        state.final_score = calculate_final_score(importance, state.relevance_score)
        return state

    async def run_stages(self, state: PipelineState) -> PipelineState:
        for name, stage in self.stages:
            try:
                state = await stage(state)
            except Exception as e:
                self.logger.warning(f"⚠️ Stage '{name}' failed for {state.identity}: {e}")
                state.errors.append(f"{name}: {e}")
                continue
            state.completed.append(name)
        return state

    def _finalize(self, state: PipelineState) -> Article:
        fields = {
            "summary": state.summary,
            "category": state.category,
            "relevance_score": state.relevance_score,
            "final_score": state.final_score,
            "processing_error": "; ".join(state.errors) or None,
        }
        if state.info is not None:
            if self.features.entity_extraction:
                fields.update({
                    "entities": list(state.info.entities),
                    "locations": list(state.info.locations),
                    "topics": list(state.info.topics),
                })
            if self.features.sentiment_analysis:
                fields["sentiment"] = state.info.sentiment
            fields["importance"] = state.info.importance
        return state.article.with_enrichment(**fields)

    async def process_article(self, article: Article) -> Article:
        """Run one article through all stages; never raises for stage failures."""
        if not article.title and not article.url:
            return article
        state = await self.run_stages(PipelineState(article=article))
        return self._finalize(state)

    async def _process_with_cache(self, article: Article) -> Article:
        key = f"processed:{article.identity}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        enriched = await self.process_article(article)
        self.cache.set(key, enriched, content_type="articles")
        return enriched

    async def process_batch(self, articles: List[Article]) -> List[Article]:
        """
        Enrich ``articles`` in fixed-size batches and sort by final score.

        Batches run one after another with a short pause in between; articles
        within a batch run concurrently. If anything unexpected fails the
        original articles are returned unchanged.
        """
        if not articles:
            return []

        start = time.perf_counter()
        batch_size = max(1, self.settings.batch_size)
        try:
            processed: List[Article] = []
            for i in range(0, len(articles), batch_size):
                batch = articles[i:i + batch_size]
                results = await asyncio.gather(
                    *(self._process_with_cache(article) for article in batch),
                    return_exceptions=True,
                )
                for original, result in zip(batch, results):
                    if isinstance(result, Exception):
                        self.logger.error(f"Failed to process article {original.identity}: {result}")
                        processed.append(original)
                    else:
                        processed.append(result)

                if i + batch_size < len(articles) and self.settings.batch_delay_seconds > 0:
                    await asyncio.sleep(self.settings.batch_delay_seconds)

            processed.sort(key=_score_key, reverse=True)
        except Exception as e:
            self.logger.error(f"❌ Batch processing failed, returning original articles: {e}")
            return list(articles)

        log_pipeline_metrics(
            self.logger, "enrichment", len(articles), len(processed), (time.perf_counter() - start) * 1000
        )
        return processed

    async def _is_duplicate(self, existing: Article, candidate: Article) -> bool:
        return await self.cache.get_or_compute(
            f"duplicate:{existing.identity}:{candidate.identity}",
            functools.partial(self.ai.is_duplicate, existing, candidate),
        )

    async def deduplicate_articles(self, articles: List[Article]) -> List[Article]:
        """Drop articles that duplicate an earlier one; the first occurrence wins."""
        if not self.features.deduplication or len(articles) < 2:
            return list(articles)

        start = time.perf_counter()
        unique: List[Article] = []
        for article in articles:
            duplicate = False
            for existing in unique:
                try:
                    duplicate = await self._is_duplicate(existing, article)
                except Exception as e:
                    self.logger.warning(f"Duplicate check failed for {article.identity}: {e}")
                    duplicate = False
                if duplicate:
                    break
            if not duplicate:
                unique.append(article)

        log_pipeline_metrics(
            self.logger, "deduplication", len(articles), len(unique), (time.perf_counter() - start) * 1000
        )
        return unique
