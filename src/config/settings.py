"""
Configuration for the news aggregation service.

Everything is read from environment variables (optionally seeded from a .env
file) into plain dataclasses. Static lookup tables for categories, locations
and per-provider parameter mapping live here as well.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv


CATEGORIES: List[Dict[str, str]] = [
    {"id": "business", "name": "Business", "description": "Business and finance news"},
    {"id": "entertainment", "name": "Entertainment", "description": "Entertainment and celebrity news"},
    {"id": "general", "name": "General", "description": "General news"},
    {"id": "health", "name": "Health", "description": "Health and wellness news"},
    {"id": "science", "name": "Science", "description": "Science and research news"},
    {"id": "sports", "name": "Sports", "description": "Sports news and updates"},
    {"id": "technology", "name": "Technology", "description": "Technology news"},
    {"id": "world", "name": "World", "description": "World news"},
    {"id": "politics", "name": "Politics", "description": "Political news"},
]

LOCATIONS: List[Dict[str, str]] = [
    {"id": "us", "name": "United States", "code": "us"},
    {"id": "gb", "name": "United Kingdom", "code": "gb"},
    {"id": "ca", "name": "Canada", "code": "ca"},
    {"id": "au", "name": "Australia", "code": "au"},
    {"id": "in", "name": "India", "code": "in"},
]

SOURCES: List[Dict[str, str]] = [
    {"id": "newsapi", "name": "NewsAPI.org", "description": "Comprehensive news API"},
    {"id": "gnews", "name": "GNews", "description": "Global news API"},
    {"id": "guardian", "name": "The Guardian", "description": "The Guardian news API"},
]

# Standard category -> provider specific value
CATEGORY_MAPPING: Dict[str, Dict[str, str]] = {
    "business": {"newsapi": "business", "gnews": "business", "guardian": "business"},
    "entertainment": {"newsapi": "entertainment", "gnews": "entertainment", "guardian": "culture"},
    "general": {"newsapi": "general", "gnews": "general", "guardian": "news"},
    "health": {"newsapi": "health", "gnews": "health", "guardian": "society"},
    "science": {"newsapi": "science", "gnews": "science", "guardian": "science"},
    "sports": {"newsapi": "sports", "gnews": "sports", "guardian": "sport"},
    "technology": {"newsapi": "technology", "gnews": "technology", "guardian": "technology"},
    "world": {"newsapi": "general", "gnews": "world", "guardian": "world"},
    "politics": {"newsapi": "general", "gnews": "nation", "guardian": "politics"},
}

# Standard location -> provider specific value
COUNTRY_MAPPING: Dict[str, Dict[str, str]] = {
    "us": {"newsapi": "us", "gnews": "us", "guardian": "usa"},
    "gb": {"newsapi": "gb", "gnews": "gb", "guardian": "uk"},
    "ca": {"newsapi": "ca", "gnews": "ca", "guardian": "canada"},
    "au": {"newsapi": "au", "gnews": "au", "guardian": "australia"},
    "in": {"newsapi": "in", "gnews": "in", "guardian": "india"},
}

DEFAULT_PROVIDER_ORDER: List[str] = ["newsapi", "gnews", "guardian"]

DEFAULT_TOP_STORY_CATEGORIES: List[str] = [
    "technology", "business", "science", "health", "sports", "entertainment",
]

HOUR = 60 * 60

CONTENT_TYPE_TTLS: Dict[str, float] = {
    "summary": 24 * HOUR,
    "category": 24 * HOUR,
    "sentiment": 24 * HOUR,
    "entities": 24 * HOUR,
    "relevance": 12 * HOUR,
    "articles": 30 * 60,
}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip().lower() for item in value.split(",") if item.strip()]


@dataclass
class ProviderSettings:
    """Connection settings for one content provider."""
    name: str
    base_url: str
    api_key: Optional[str] = None
    auth_style: str = "query"  # "query" or "header"
    key_name: str = "apiKey"
    requests_per_second: float = 1.0
    timeout_seconds: float = 10.0
    max_retries: int = 2


@dataclass
class CacheSettings:
    default_ttl: float = 15 * 60
    max_size: int = 1000
    cleanup_interval: float = 5 * 60
    content_type_ttls: Dict[str, float] = field(default_factory=lambda: dict(CONTENT_TYPE_TTLS))


@dataclass
class FeatureFlags:
    """Per-stage switches for the enrichment pipeline."""
    summarization: bool = True
    categorization: bool = True
    entity_extraction: bool = True
    sentiment_analysis: bool = True
    relevance_scoring: bool = True
    deduplication: bool = True
    fallback_to_local: bool = True


@dataclass
class PipelineSettings:
    batch_size: int = 5
    batch_delay_seconds: float = 0.2


@dataclass
class AIServiceSettings:
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    fallback_model: Optional[str] = "gemini-2.5-flash-lite"
    request_timeout: float = 60.0
    min_seconds_between_calls: float = 0.1
    prompts_path: Optional[str] = None


@dataclass
class AggregatorSettings:
    default_order: List[str] = field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))
    provider_timeout: float = 10.0
    request_deadline: float = 30.0
    availability_refresh_seconds: float = 60 * 60


@dataclass
class AppConfig:
    providers: Dict[str, ProviderSettings]
    cache: CacheSettings = field(default_factory=CacheSettings)
    features: FeatureFlags = field(default_factory=FeatureFlags)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    ai: AIServiceSettings = field(default_factory=AIServiceSettings)
    aggregator: AggregatorSettings = field(default_factory=AggregatorSettings)
    log_level: str = "INFO"
    log_dir: str = "logs"


def load_provider_settings() -> Dict[str, ProviderSettings]:
    timeout = float(os.getenv("PROVIDER_TIMEOUT", "10"))
    return {
        "newsapi": ProviderSettings(
            name="newsapi",
            base_url=os.getenv("NEWSAPI_BASE_URL", "https://newsapi.org/v2"),
            api_key=os.getenv("NEWSAPI_KEY"),
            auth_style="header",
            key_name="X-Api-Key",
            requests_per_second=float(os.getenv("NEWSAPI_RPS", "1")),
            timeout_seconds=timeout,
        ),
        "gnews": ProviderSettings(
            name="gnews",
            base_url=os.getenv("GNEWS_BASE_URL", "https://gnews.io/api/v4"),
            api_key=os.getenv("GNEWS_API_KEY"),
            auth_style="query",
            key_name="token",
            requests_per_second=float(os.getenv("GNEWS_RPS", "1")),
            timeout_seconds=timeout,
        ),
        "guardian": ProviderSettings(
            name="guardian",
            base_url=os.getenv("GUARDIAN_BASE_URL", "https://content.guardianapis.com"),
            api_key=os.getenv("GUARDIAN_API_KEY"),
            auth_style="query",
            key_name="api-key",
            requests_per_second=float(os.getenv("GUARDIAN_RPS", "1")),
            timeout_seconds=timeout,
        ),
    }


def load_config() -> AppConfig:
    """Build the application configuration from the environment."""
    load_dotenv()

    features = FeatureFlags(
        summarization=_env_bool("AI_FEATURE_SUMMARIZATION", True),
        categorization=_env_bool("AI_FEATURE_CATEGORIZATION", True),
        entity_extraction=_env_bool("AI_FEATURE_ENTITY_EXTRACTION", True),
        sentiment_analysis=_env_bool("AI_FEATURE_SENTIMENT_ANALYSIS", True),
        relevance_scoring=_env_bool("AI_FEATURE_RELEVANCE_SCORING", True),
        deduplication=_env_bool("AI_FEATURE_DEDUPLICATION", True),
        fallback_to_local=_env_bool("AI_FEATURE_FALLBACK_TO_LOCAL", True),
    )

    return AppConfig(
        providers=load_provider_settings(),
        cache=CacheSettings(
            default_ttl=float(os.getenv("CACHE_TTL_SECONDS", str(15 * 60))),
            max_size=int(os.getenv("CACHE_MAX_SIZE", "1000")),
            cleanup_interval=float(os.getenv("CACHE_CLEANUP_SECONDS", str(5 * 60))),
        ),
        features=features,
        pipeline=PipelineSettings(
            batch_size=int(os.getenv("ENRICHMENT_BATCH_SIZE", "5")),
            batch_delay_seconds=float(os.getenv("ENRICHMENT_BATCH_DELAY_MS", "200")) / 1000.0,
        ),
        ai=AIServiceSettings(
            api_key=os.getenv("GEMINI_API_KEY"),
            model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            fallback_model=os.getenv("GEMINI_FALLBACK_MODEL", "gemini-2.5-flash-lite") or None,
            request_timeout=float(os.getenv("AI_REQUEST_TIMEOUT", "60")),
            prompts_path=os.getenv("PROMPTS_PATH"),
        ),
        aggregator=AggregatorSettings(
            default_order=_env_list("NEWS_PROVIDER_ORDER", DEFAULT_PROVIDER_ORDER),
            provider_timeout=float(os.getenv("PROVIDER_TIMEOUT", "10")),
            request_deadline=float(os.getenv("AGGREGATION_DEADLINE", "30")),
            availability_refresh_seconds=float(os.getenv("AVAILABILITY_REFRESH_SECONDS", str(60 * 60))),
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )
