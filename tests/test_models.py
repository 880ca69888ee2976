import base64

import pytest

from src.models.content import (
    Connection,
    InvalidCursorError,
    ProviderError,
    build_connection,
    decode_cursor,
    deduplicate_by_url,
    encode_cursor,
    generate_article_id,
)
from tests.conftest import make_article


def test_generate_article_id_is_stable():
    first = generate_article_id("guardian", "https://x/1", "Title")
    second = generate_article_id("guardian", "https://x/1", "Title")
    other = generate_article_id("newsapi", "https://x/1", "Title")

    assert first == second
    assert first != other


def test_cursor_round_trip_keeps_index_and_id():
    article = make_article(url="https://example.com/a")
    payload = decode_cursor(encode_cursor(article, 7))

    assert payload["index"] == 7
    assert payload["id"] == article.id
    assert payload["publishedAt"] == article.published_at


def test_cursor_without_date():
    article = make_article(hours_old=None)
    payload = decode_cursor(encode_cursor(article, 0))

    assert payload["publishedAt"] is None


@pytest.mark.parametrize("cursor", [
    "not base64 at all!!",
    base64.urlsafe_b64encode(b"not json").decode(),
    base64.urlsafe_b64encode(b'{"id": "x"}').decode(),
    base64.urlsafe_b64encode(b'{"id": "x", "index": -1}').decode(),
    base64.urlsafe_b64encode(b'[1, 2]').decode(),
])
def test_decode_cursor_rejects_malformed_input(cursor):
    with pytest.raises(InvalidCursorError):
        decode_cursor(cursor)


def test_build_connection_first_page():
    articles = [make_article(url=f"https://example.com/{i}") for i in range(5)]

    connection = build_connection(articles, offset=0, first=2)

    assert [a.url for a in connection.articles] == ["https://example.com/0", "https://example.com/1"]
    assert connection.total_count == 5
    assert connection.page_info.has_next_page is True
    assert connection.page_info.has_previous_page is False
    assert connection.page_info.start_cursor == connection.edges[0].cursor
    assert connection.page_info.end_cursor == connection.edges[-1].cursor
    assert connection.errors is None


def test_build_connection_last_page_indexes_cursors_from_offset():
    articles = [make_article(url=f"https://example.com/{i}") for i in range(5)]

    connection = build_connection(articles, offset=3, first=5)

    assert len(connection.edges) == 2
    assert connection.page_info.has_next_page is False
    assert connection.page_info.has_previous_page is True
    assert decode_cursor(connection.edges[0].cursor)["index"] == 3


def test_build_connection_empty():
    connection = build_connection([], first=10, errors=[])

    assert connection.edges == []
    assert connection.page_info.start_cursor is None
    assert connection.page_info.end_cursor is None
    assert connection.errors is None


def test_connection_to_dict_uses_camel_case():
    article = make_article()
    connection = build_connection([article], first=1, errors=[ProviderError("gnews", "down")])

    data = connection.to_dict()

    assert data["totalCount"] == 1
    assert data["pageInfo"]["hasNextPage"] is False
    assert data["edges"][0]["node"]["publishedAt"] == article.published_at.isoformat()
    assert data["errors"] == [{"source": "gnews", "message": "down", "code": "ERROR", "retryable": True}]


def test_empty_connection_normalizes_errors():
    assert Connection.empty().errors is None
    assert Connection.empty([]).errors is None


def test_deduplicate_by_url_keeps_first_and_urlless():
    first = make_article(title="A", url="https://example.com/same", source="newsapi")
    second = make_article(title="B", url="https://example.com/same", source="guardian")
    no_url_1 = make_article(title="C", url="")
    no_url_2 = make_article(title="D", url="")

    unique = deduplicate_by_url([first, second, no_url_1, no_url_2])

    assert [a.title for a in unique] == ["A", "C", "D"]
    assert deduplicate_by_url(unique) == unique


def test_with_enrichment_merges_fields():
    article = make_article().with_enrichment(summary="short")
    updated = article.with_enrichment(final_score=7.5)

    assert updated.enrichment.summary == "short"
    assert updated.final_score == 7.5
    assert article.final_score is None
