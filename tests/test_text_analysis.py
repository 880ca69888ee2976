import pytest

from src.utils import text_analysis
from tests.conftest import make_article


def test_prepare_content_prefixes_title_for_short_bodies():
    article = make_article(title="Rates rise", description="Short text.")

    assert text_analysis.prepare_content(article) == "Rates rise. Short text."


def test_prepare_content_truncates():
    article = make_article(content="x" * 2000)

    assert len(text_analysis.prepare_content(article)) == 1500
    assert len(text_analysis.prepare_content(article, shorter=True)) == 500


@pytest.mark.parametrize("raw,expected", [
    ("Technology", "technology"),
    ("tech.", "technology"),
    (" Finance ", "business"),
    ("sport", "sports"),
    ("astrology", "general"),
    (None, "general"),
])
def test_normalize_category(raw, expected):
    assert text_analysis.normalize_category(raw) == expected


def test_categorize_by_keywords_picks_best_match():
    article = make_article(
        title="Hospital trial of new vaccine",
        description="Doctors report the treatment helped every patient",
    )

    assert text_analysis.categorize_by_keywords(article) == "health"


def test_categorize_by_keywords_defaults_to_general():
    article = make_article(title="Zzz qqq", description="")

    assert text_analysis.categorize_by_keywords(article) == "general"


def test_extract_basic_entities_finds_quotes_and_names():
    article = make_article(
        title='Angela Merkel praises "Green Deal" plan',
        description="Speaking in New York City on Monday",
    )

    entities = text_analysis.extract_basic_entities(article)

    assert "Green Deal" in entities
    assert "Angela Merkel" in entities
    assert "New York City" in entities
    assert len(entities) <= text_analysis.MAX_ENTITIES


def test_keyword_relevance_score_is_clamped():
    unrelated = make_article(title="Nothing here", description="")
    on_topic = make_article(
        title="Tech software app digital internet cyber ai robot hardware technology",
    )

    assert text_analysis.keyword_relevance_score(unrelated, "technology") == 30.0
    assert text_analysis.keyword_relevance_score(on_topic, "technology") == 95.0


def test_is_basic_duplicate_uses_title_overlap():
    a = make_article(title="Central bank raises interest rates again")
    b = make_article(title="Central bank raises interest rates")
    c = make_article(title="Football final ends in penalties")

    assert text_analysis.is_basic_duplicate(a, b) is True
    assert text_analysis.is_basic_duplicate(a, c) is False


def test_title_similarity_of_empty_titles():
    assert text_analysis.title_similarity("", "") == 0.0


def test_basic_summary_takes_leading_sentences():
    article = make_article(description="First one. Second one! Third one?")

    assert text_analysis.basic_summary(article) == "First one. Second one!"


def test_basic_summary_falls_back_to_title():
    article = make_article(title="Only a title", description="")

    assert text_analysis.basic_summary(article) == "Only a title"
