from unittest.mock import AsyncMock

import pytest

from src.config.settings import AIServiceSettings, FeatureFlags, PipelineSettings
from src.pipeline.enrichment_pipeline import EnrichmentPipeline, calculate_final_score
from src.services.ai_service import AIService, ExtractedInfo
from tests.conftest import make_article


def test_calculate_final_score_defaults():
    assert calculate_final_score(8, 70) == pytest.approx(8 * 0.4 + 7 * 0.6)
    assert calculate_final_score(None, None) == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_process_article_runs_every_stage(pipeline):
    article = make_article(
        title="Team wins championship match",
        description="The football team celebrated. Fans cheered all night.",
        category="sports",
    )

    enriched = await pipeline.process_article(article)

    e = enriched.enrichment
    assert e.summary == "The football team celebrated. Fans cheered all night."
    assert e.category == "sports"
    assert e.topics == ["sports"]
    assert e.sentiment == "neutral"
    assert e.importance == 5.0
    assert e.relevance_score is not None
    assert e.final_score == pytest.approx(calculate_final_score(5.0, e.relevance_score))
    assert e.processing_error is None
    assert enriched.title == article.title


@pytest.mark.asyncio
async def test_failed_categorize_still_scores_with_original_category(pipeline, local_ai):
    local_ai.categorize = AsyncMock(side_effect=RuntimeError("model exploded"))
    local_ai.score_relevance = AsyncMock(return_value=80.0)
    article = make_article(title="Quarterly results", category="business")

    enriched = await pipeline.process_article(article)

    assert enriched.enrichment.category is None
    assert enriched.final_score is not None
    assert "categorize: model exploded" in enriched.enrichment.processing_error
    local_ai.score_relevance.assert_awaited_once_with(article, "business")


@pytest.mark.asyncio
async def test_disabled_stages_leave_fields_unset(local_ai, cache):
    features = FeatureFlags(summarization=False, sentiment_analysis=False, relevance_scoring=False)
    pipeline = EnrichmentPipeline(local_ai, cache, features, PipelineSettings(batch_delay_seconds=0))

    enriched = await pipeline.process_article(make_article(title="Vaccine rollout", description="Hospital update."))

    e = enriched.enrichment
    assert e.summary is None
    assert e.sentiment is None
    assert e.final_score is None
    assert e.relevance_score is None
    assert e.category == "health"
    assert e.entities is not None


@pytest.mark.asyncio
async def test_stage_results_are_cached_by_identity(pipeline, local_ai):
    local_ai.summarize = AsyncMock(return_value="cached summary")
    article = make_article(url="https://example.com/same")

    await pipeline.process_article(article)
    await pipeline.process_article(article)

    local_ai.summarize.assert_awaited_once()


@pytest.mark.asyncio
async def test_article_without_title_or_url_is_returned_unchanged(pipeline):
    article = make_article(title="", url="")

    assert await pipeline.process_article(article) is article


@pytest.mark.asyncio
async def test_process_batch_sorts_by_final_score(local_ai, cache):
    scores = {"https://example.com/low": 10.0, "https://example.com/high": 90.0, "https://example.com/mid": 50.0}
    local_ai.score_relevance = AsyncMock(side_effect=lambda article, category: scores[article.url])
    pipeline = EnrichmentPipeline(local_ai, cache, FeatureFlags(), PipelineSettings(batch_size=2, batch_delay_seconds=0))
    articles = [make_article(title=f"Story {u[-3:]}", url=u) for u in scores]

    processed = await pipeline.process_batch(articles)

    assert [a.url for a in processed] == [
        "https://example.com/high", "https://example.com/mid", "https://example.com/low",
    ]


@pytest.mark.asyncio
async def test_process_batch_uses_processed_cache(pipeline, cache):
    article = make_article()

    first = await pipeline.process_batch([article])
    assert cache.get(f"processed:{article.identity}") == first[0]

    pipeline.run_stages = AsyncMock(side_effect=AssertionError("should not run"))
    second = await pipeline.process_batch([article])
    assert second == first


@pytest.mark.asyncio
async def test_process_batch_keeps_original_when_article_fails(pipeline):
    good = make_article(url="https://example.com/good")
    bad = make_article(url="https://example.com/bad")
    original = pipeline.process_article

    async def flaky(article):
        if article.url.endswith("bad"):
            raise RuntimeError("unexpected")
        return await original(article)

    pipeline.process_article = flaky

    processed = await pipeline.process_batch([good, bad])

    assert len(processed) == 2
    assert bad in processed
    assert next(a for a in processed if a.url.endswith("good")).enrichment is not None


@pytest.mark.asyncio
async def test_process_batch_empty(pipeline):
    assert await pipeline.process_batch([]) == []


@pytest.mark.asyncio
async def test_deduplicate_articles_keeps_first(pipeline):
    a = make_article(title="Central bank raises interest rates again", url="https://a.example/1", source="newsapi")
    b = make_article(title="Central bank raises interest rates", url="https://b.example/2", source="gnews")
    c = make_article(title="Football final ends in penalties", url="https://c.example/3")

    unique = await pipeline.deduplicate_articles([a, b, c])

    assert unique == [a, c]


@pytest.mark.asyncio
async def test_deduplicate_articles_disabled(local_ai, cache):
    pipeline = EnrichmentPipeline(local_ai, cache, FeatureFlags(deduplication=False))
    a = make_article(url="https://example.com/x")

    assert await pipeline.deduplicate_articles([a, a]) == [a, a]


@pytest.mark.asyncio
async def test_deduplicate_check_failure_keeps_article(pipeline, local_ai):
    local_ai.is_duplicate = AsyncMock(side_effect=RuntimeError("nope"))
    a = make_article(url="https://example.com/1")
    b = make_article(url="https://example.com/2")

    assert await pipeline.deduplicate_articles([a, b]) == [a, b]


@pytest.mark.asyncio
async def test_model_backed_pipeline_uses_extracted_importance(cache):
    ai = AIService(AIServiceSettings(api_key=None, min_seconds_between_calls=0), FeatureFlags())
    ai.extract_info = AsyncMock(return_value=ExtractedInfo(entities=["ACME"], importance=9.0, sentiment="positive"))
    ai.score_relevance = AsyncMock(return_value=100.0)
    pipeline = EnrichmentPipeline(ai, cache, FeatureFlags(), PipelineSettings(batch_delay_seconds=0))

    enriched = await pipeline.process_article(make_article())

    assert enriched.enrichment.entities == ["ACME"]
    assert enriched.enrichment.sentiment == "positive"
    assert enriched.final_score == pytest.approx(9.0 * 0.4 + 6.0)
