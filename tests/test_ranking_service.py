from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.services.ranking_service import RankingService, merge_by_recency, recency_score
from src.utils.error_monitoring import MonitoringService
from tests.conftest import NOW, make_article


@pytest.mark.parametrize("hours,expected", [
    (0, 10.0),
    (3, 9.0),
    (6, 8.0),
    (15, 7.0),
    (24, 6.0),
    (48, 5.0),
    (72, 4.0),
    (120, 3.0),
    (168, 1.0),
    (500, 1.0),
])
def test_recency_score_steps(hours, expected):
    assert recency_score(NOW - timedelta(hours=hours), NOW) == pytest.approx(expected)


def test_recency_score_without_date():
    assert recency_score(None, NOW) == 5.0


def test_recency_score_future_date_is_capped():
    assert recency_score(NOW + timedelta(hours=5), NOW) == 10.0


def test_newer_article_ranks_higher_with_equal_scores(pipeline):
    ranker = RankingService(pipeline)
    fresh = make_article(title="Fresh", url="https://example.com/fresh", hours_old=1).with_enrichment(final_score=7.0)
    stale = make_article(title="Stale", url="https://example.com/stale", hours_old=100).with_enrichment(final_score=7.0)

    ranked = ranker.rank_articles([stale, fresh], diversity_boost=0, now=NOW)

    assert [a.title for a in ranked] == ["Fresh", "Stale"]
    assert ranked[0].enrichment.recency_score > ranked[1].enrichment.recency_score
    assert ranked[0].enrichment.combined_score == pytest.approx(ranked[0].enrichment.recency_score * 0.3 + 7.0 * 0.7)


def test_missing_final_score_defaults_to_five(pipeline):
    ranker = RankingService(pipeline)
    article = make_article(hours_old=0)

    ranked = ranker.rank_articles([article], diversity_boost=0, now=NOW)

    assert ranked[0].enrichment.combined_score == pytest.approx(10 * 0.3 + 5 * 0.7)
    assert article.enrichment is None


def test_diversity_boost_favours_rare_category(pipeline):
    ranker = RankingService(pipeline)
    tech_1 = make_article(title="T1", url="https://example.com/t1", category="technology")
    tech_2 = make_article(title="T2", url="https://example.com/t2", category="technology")
    sport = make_article(title="S1", url="https://example.com/s1", category="sports")

    ranked = ranker.rank_articles([tech_1, tech_2, sport], diversity_boost=0.1, now=NOW)

    assert ranked[0].title == "S1"
    assert ranked[0].enrichment.combined_score - ranked[1].enrichment.combined_score == pytest.approx(0.05)


def test_diversity_counts_topics(pipeline):
    ranker = RankingService(pipeline)
    shared = make_article(title="A", url="https://example.com/a").with_enrichment(topics=["ai", "chips"])
    unique = make_article(title="B", url="https://example.com/b").with_enrichment(topics=["ai", "space"])

    ranked = ranker.rank_articles([shared, unique], diversity_boost=1.0, now=NOW)
    combined = {a.title: a.enrichment.combined_score for a in ranked}

    # both share "ai" (1/2); "chips" and "space" are each unique (1)
    assert combined["A"] == pytest.approx(combined["B"])


def test_merge_by_recency_dedupes_and_sorts():
    old = make_article(title="Old", url="https://example.com/1", hours_old=10)
    new = make_article(title="New", url="https://example.com/2", hours_old=1)
    dup = make_article(title="Dup", url="https://example.com/1", hours_old=0)
    undated = make_article(title="Undated", url="https://example.com/3", hours_old=None)

    merged = merge_by_recency([[old, new], [dup, undated]], limit=10)

    assert [a.title for a in merged] == ["New", "Old", "Undated"]
    assert len(merge_by_recency([[old, new]], limit=1)) == 1


@pytest.mark.asyncio
async def test_get_top_stories_fills_slots_and_orders_by_score(pipeline):
    monitoring = MonitoringService()
    ranker = RankingService(pipeline, monitoring)
    by_category = {
        "technology": [
            make_article(title="Software update ships", url="https://example.com/tech1", category="technology"),
            make_article(title="Robot app launches", url="https://example.com/tech2", category="technology"),
        ],
        "sports": [
            make_article(title="Team wins football match", url="https://example.com/sport1", category="sports"),
        ],
    }

    stories = await ranker.get_top_stories(by_category, limit=2)

    assert len(stories) == 2
    assert {a.effective_category for a in stories} == {"technology", "sports"}
    assert stories[0].final_score >= stories[1].final_score
    assert monitoring.operation_timings["get_top_stories"]


@pytest.mark.asyncio
async def test_get_top_stories_degrades_to_recency_on_failure():
    pipeline = MagicMock()
    pipeline.process_batch = AsyncMock(side_effect=RuntimeError("enrichment down"))
    ranker = RankingService(pipeline)
    older = make_article(title="Older", url="https://example.com/1", hours_old=5)
    newer = make_article(title="Newer", url="https://example.com/2", hours_old=1)

    stories = await ranker.get_top_stories({"world": [older], "business": [newer]}, limit=5)

    assert [a.title for a in stories] == ["Newer", "Older"]


@pytest.mark.asyncio
async def test_get_top_stories_empty_input(pipeline):
    ranker = RankingService(pipeline)

    assert await ranker.get_top_stories({}, limit=5) == []
    assert await ranker.get_top_stories({"world": [make_article()]}, limit=0) == []


def test_filter_articles(pipeline):
    ranker = RankingService(pipeline)
    keep = make_article(title="Chip maker rallies", url="https://example.com/1", category="technology").with_enrichment(
        final_score=8.0, sentiment="positive", entities=["ACME Corp"],
    )
    low_score = make_article(title="Minor news", url="https://example.com/2").with_enrichment(final_score=3.0)
    negative = make_article(title="Chip crash", url="https://example.com/3", category="technology").with_enrichment(
        final_score=9.0, sentiment="negative",
    )
    unscored = make_article(title="Chip news", url="https://example.com/4", category="technology")

    result = ranker.filter_articles(
        [keep, low_score, negative, unscored],
        min_score=5.0,
        category="Technology",
        exclude_sentiments=["negative"],
        include_keywords=["chip"],
    )

    assert [a.title for a in result] == ["Chip maker rallies", "Chip news"]


def test_filter_articles_entities_keywords_and_dates(pipeline):
    ranker = RankingService(pipeline)
    acme = make_article(title="ACME earnings", url="https://example.com/1", hours_old=2).with_enrichment(
        entities=["ACME Corp"],
    )
    other = make_article(title="Other earnings", url="https://example.com/2", hours_old=2).with_enrichment(
        entities=["Globex"],
    )
    old = make_article(title="ACME archive", url="https://example.com/3", hours_old=400)
    spam = make_article(title="ACME sponsored", url="https://example.com/4", hours_old=1)

    result = ranker.filter_articles(
        [acme, other, old, spam],
        min_score=0,
        require_entities=["acme"],
        exclude_keywords=["sponsored"],
        min_published_date=(NOW - timedelta(days=7)).replace(tzinfo=None),
    )

    assert [a.title for a in result] == ["ACME earnings"]
