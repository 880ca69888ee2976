"""
Content models for the news aggregation service.
"""

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse


class InvalidCursorError(ValueError):
    """Raised when a pagination cursor cannot be decoded."""
    pass


def generate_article_id(source: str, url: Optional[str], title: Optional[str]) -> str:
    """Stable id for an article: the same provider, url and title always hash the same."""
    raw = f"{source}:{url or ''}:{title or ''}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


@dataclass
class Enrichment:
    """AI-derived annotations, filled in stage by stage."""
    summary: Optional[str] = None
    category: Optional[str] = None
    entities: Optional[List[str]] = None
    locations: Optional[List[str]] = None
    topics: Optional[List[str]] = None
    sentiment: Optional[str] = None
    importance: Optional[float] = None
    relevance_score: Optional[float] = None
    final_score: Optional[float] = None

    # Set by the ranker
    recency_score: Optional[float] = None
    combined_score: Optional[float] = None

    processing_error: Optional[str] = None


@dataclass
class Article:
    """Represents a normalized article from any provider."""

    id: str
    title: str
    url: str
    source: str
    published_at: Optional[datetime] = None
    description: str = ""
    content: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    location: Optional[str] = None
    enrichment: Optional[Enrichment] = None

    @property
    def identity(self) -> str:
        """Key used for pipeline caching: url, or title when the url is empty."""
        return self.url or self.title

    @property
    def body(self) -> str:
        return self.content or self.description or ""

    @property
    def final_score(self) -> Optional[float]:
        return self.enrichment.final_score if self.enrichment else None

    @property
    def effective_category(self) -> Optional[str]:
        if self.enrichment and self.enrichment.category:
            return self.enrichment.category
        return self.category

    @property
    def topics(self) -> List[str]:
        if self.enrichment and self.enrichment.topics:
            return list(self.enrichment.topics)
        return []

    def with_enrichment(self, **fields: Any) -> "Article":
        """Return a copy with the given enrichment fields merged in."""
        base = self.enrichment or Enrichment()
        return replace(self, enrichment=replace(base, **fields))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "url": self.url,
            "imageUrl": self.image_url,
            "source": self.source,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
            "category": self.category,
            "location": self.location,
        }
        if self.enrichment:
            e = self.enrichment
            data.update({
                "summary": e.summary,
                "aiCategory": e.category,
                "entities": e.entities,
                "locations": e.locations,
                "topics": e.topics,
                "sentiment": e.sentiment,
                "importance": e.importance,
                "relevanceScore": e.relevance_score,
                "finalScore": e.final_score,
                "recencyScore": e.recency_score,
                "combinedScore": e.combined_score,
                "processingError": e.processing_error,
            })
        return data


@dataclass
class ProviderError:
    """A single provider failure reported next to partial results."""
    source: str
    message: str
    code: str = "ERROR"
    retryable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


@dataclass
class ProviderResult:
    """Articles returned by one provider, or the error it raised."""
    source: str
    articles: List[Article] = field(default_factory=list)
    error: Optional[ProviderError] = None
    fetch_time: float = 0.0


@dataclass
class Edge:
    node: Article
    cursor: str


@dataclass
class PageInfo:
    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None


@dataclass
class Connection:
    """Paginated result envelope."""
    edges: List[Edge] = field(default_factory=list)
    page_info: PageInfo = field(default_factory=PageInfo)
    total_count: int = 0
    errors: Optional[List[ProviderError]] = None

    @property
    def articles(self) -> List[Article]:
        return [edge.node for edge in self.edges]

    @classmethod
    def empty(cls, errors: Optional[List[ProviderError]] = None) -> "Connection":
        return cls(errors=errors or None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edges": [{"node": edge.node.to_dict(), "cursor": edge.cursor} for edge in self.edges],
            "pageInfo": {
                "hasNextPage": self.page_info.has_next_page,
                "hasPreviousPage": self.page_info.has_previous_page,
                "startCursor": self.page_info.start_cursor,
                "endCursor": self.page_info.end_cursor,
            },
            "totalCount": self.total_count,
            "errors": [e.to_dict() for e in self.errors] if self.errors else None,
        }


def encode_cursor(article: Article, index: int) -> str:
    payload = {
        "id": article.id,
        "publishedAt": article.published_at.isoformat() if article.published_at else None,
        "index": index,
    }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> Dict[str, Any]:
    """Decode a cursor back into its id, publishedAt and index."""
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeError, AttributeError) as e:
        raise InvalidCursorError(f"Malformed cursor: {cursor!r}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("index"), int) or payload["index"] < 0:
        raise InvalidCursorError(f"Malformed cursor payload: {cursor!r}")

    published = payload.get("publishedAt")
    if published:
        try:
            payload["publishedAt"] = isoparse(published)
        except (ValueError, TypeError) as e:
            raise InvalidCursorError(f"Malformed cursor date: {published!r}") from e
    return payload


def build_connection(
    articles: List[Article],
    offset: int = 0,
    first: int = 10,
    errors: Optional[List[ProviderError]] = None,
    total_count: Optional[int] = None,
) -> Connection:
    """Slice ``articles`` into one page starting at ``offset``."""
    offset = max(0, offset)
    page = articles[offset:offset + max(0, first)]
    edges = [Edge(node=article, cursor=encode_cursor(article, offset + i)) for i, article in enumerate(page)]

    page_info = PageInfo(
        has_next_page=len(articles) > offset + len(page),
        has_previous_page=offset > 0,
        start_cursor=edges[0].cursor if edges else None,
        end_cursor=edges[-1].cursor if edges else None,
    )
    return Connection(
        edges=edges,
        page_info=page_info,
        total_count=len(articles) if total_count is None else total_count,
        errors=errors or None,
    )


def deduplicate_by_url(articles: List[Article]) -> List[Article]:
    """Keep the first article per non-empty url; articles without a url are kept."""
    seen = set()
    unique: List[Article] = []
    for article in articles:
        if article.url:
            if article.url in seen:
                continue
            seen.add(article.url)
        unique.append(article)
    return unique
