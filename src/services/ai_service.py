import asyncio
import inspect
import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
from google import genai
from google.genai import types

from src.config.settings import AIServiceSettings, FeatureFlags
from src.models.content import Article
from src.utils import text_analysis
from src.utils.logging_config import log_ai_interaction


DEFAULT_PROMPTS_PATH = Path(__file__).resolve().parent.parent / "config" / "prompts.yaml"

SENTIMENTS = ("positive", "negative", "neutral", "mixed")

CALL_TYPES = ("summarize", "categorize", "extractInfo", "sentiment", "relevance", "duplicate")


class AIServiceError(Exception):
    pass


@dataclass
class ExtractedInfo:
    entities: List[str] = field(default_factory=list)
    locations: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    sentiment: str = "neutral"
    importance: float = 5.0


def _empty_usage() -> Dict[str, Any]:
    return {
        "total_calls": 0,
        "total_tokens": 0,
        "calls_by_type": {call_type: 0 for call_type in CALL_TYPES},
    }


class AIService:
    """
    Gemini-backed article analysis with tiered fallback.

    Every operation tries the primary model, then the fallback model once, then
    a local heuristic, then a fixed default value. Without an API key the model
    tiers are skipped entirely.
    """

    def __init__(
        self,
        settings: Optional[AIServiceSettings] = None,
        features: Optional[FeatureFlags] = None,
        client: Optional[Any] = None,
    ):
        self.settings = settings or AIServiceSettings()
        self.features = features or FeatureFlags()
        self.logger = logging.getLogger(__name__)

        self.prompts_path = Path(self.settings.prompts_path) if self.settings.prompts_path else DEFAULT_PROMPTS_PATH
        self.prompts = self._load_prompts()

        params = self.prompts.get("parameters", {}) if isinstance(self.prompts, dict) else {}
        temps_cfg = params.get("temperatures", {}) if isinstance(params, dict) else {}
        tokens_cfg = params.get("max_tokens", {}) if isinstance(params, dict) else {}
        self.temperatures: Dict[str, float] = {
            "primary": float(temps_cfg.get("primary", 0.1)),
            "fallback": float(temps_cfg.get("fallback", 0.0)),
        }
        self.max_tokens: Dict[str, int] = {
            "primary": int(tokens_cfg.get("primary", 1024)),
            "fallback": int(tokens_cfg.get("fallback", 300)),
        }

        self.model = self.settings.model
        self.fallback_model = self.settings.fallback_model

        if client is not None:
            self.client = client
        elif self.settings.api_key:
            self.client = genai.Client(api_key=self.settings.api_key)
        else:
            self.client = None
            self.logger.warning("⚠️ GEMINI_API_KEY not configured. AI features will use local heuristics only.")

        self.api_usage = _empty_usage()
        self.min_time_between_calls = self.settings.min_seconds_between_calls
        self._last_call = 0.0
        self._rate_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _load_prompts(self) -> Dict[str, Any]:
        """Load prompts from YAML configuration file."""
        try:
            with open(self.prompts_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise AIServiceError(f"Prompts file not found at {self.prompts_path}") from e
        except yaml.YAMLError as e:
            raise AIServiceError(f"Error parsing YAML at {self.prompts_path}: {e}") from e

    def _format_prompt(self, prompt_key: str, context: Dict[str, Any]) -> Dict[str, str]:
        cfg = self.prompts.get(prompt_key)
        if not cfg:
            raise AIServiceError(f"Prompt '{prompt_key}' is not defined in {self.prompts_path}")
        try:
            user_text = cfg.get("template", "").format(**context)
        except KeyError as e:
            raise AIServiceError(f"Prompt '{prompt_key}' is missing context value {e}") from e
        return {"system": cfg.get("system", "").strip(), "user": user_text}

    async def _apply_rate_limit(self) -> None:
        async with self._rate_lock:
            elapsed = time.monotonic() - self._last_call
            if elapsed < self.min_time_between_calls:
                await asyncio.sleep(self.min_time_between_calls - elapsed)
            self._last_call = time.monotonic()

    def _track_usage(self, call_type: str, tokens: int = 0) -> None:
        self.api_usage["total_calls"] += 1
        self.api_usage["total_tokens"] += tokens
        if call_type in self.api_usage["calls_by_type"]:
            self.api_usage["calls_by_type"][call_type] += 1

    def get_api_usage(self) -> Dict[str, Any]:
        return {
            "total_calls": self.api_usage["total_calls"],
            "total_tokens": self.api_usage["total_tokens"],
            "calls_by_type": dict(self.api_usage["calls_by_type"]),
        }

    def reset_api_usage(self) -> None:
        self.api_usage = _empty_usage()

    async def _call_gemini(
        self,
        prompt_key: str,
        context: Dict[str, Any],
        use_fallback: bool = False,
        json_output: bool = False,
    ) -> str:
        """Run one prompt against the primary or fallback model and return the response text."""
        if self.client is None:
            raise AIServiceError("Gemini client is not configured")

        tier = "fallback" if use_fallback else "primary"
        model = self.fallback_model if use_fallback else self.model
        prompt = self._format_prompt(prompt_key, context)

        config_params: Dict[str, Any] = {
            "max_output_tokens": self.max_tokens[tier],
            "temperature": self.temperatures[tier],
        }
        if prompt["system"]:
            config_params["system_instruction"] = prompt["system"]
        if json_output:
            config_params["response_mime_type"] = "application/json"

        timeout = self.settings.request_timeout
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=model,
                    contents=prompt["user"],
                    config=types.GenerateContentConfig(**config_params),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self.logger.error(f"Gemini API call timed out after {timeout} seconds")
            raise AIServiceError(f"Gemini API call timed out after {timeout} seconds")

        usage_meta = getattr(response, "usage_metadata", None)
        tokens = (getattr(usage_meta, "total_token_count", 0) if usage_meta else 0) or 0
        self.api_usage["total_tokens"] += tokens

        text = getattr(response, "text", None)
        log_ai_interaction(
            self.logger, prompt_key, model, (time.perf_counter() - start) * 1000, bool(text), tokens_used=tokens
        )
        if not text:
            raise AIServiceError(f"Empty response from {model} for '{prompt_key}'")
        return text.strip()

    @staticmethod
    def _parse_json(text: str) -> Dict[str, Any]:
        cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise AIServiceError(f"Failed to parse JSON response: {e}") from e
        if not isinstance(data, dict):
            raise AIServiceError("Expected a JSON object in the model response")
        return data

    async def execute_with_fallback(
        self,
        operation: Callable[[bool], Awaitable[Any]],
        operation_type: str,
        fallback_value: Any = None,
        fallback_fn: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Run ``operation`` through the fallback tiers.

        ``operation(use_fallback)`` is tried with the primary model, then once with
        the fallback model. ``fallback_fn`` is the local heuristic and
        ``fallback_value`` the final default. Each tier runs at most once.
        """
        if self.enabled:
            try:
                await self._apply_rate_limit()
                self._track_usage(operation_type)
                return await operation(False)
            except Exception as e:
                self.logger.warning(f"⚠️ Error in {operation_type}: {e}")

            if self.fallback_model:
                try:
                    self.logger.info(f"Retrying {operation_type} with fallback model {self.fallback_model}")
                    await self._apply_rate_limit()
                    self._track_usage(operation_type)
                    return await operation(True)
                except Exception as e:
                    self.logger.warning(f"⚠️ Fallback model also failed for {operation_type}: {e}")

        if fallback_fn is not None and self.features.fallback_to_local:
            try:
                self.logger.debug(f"Using local fallback for {operation_type}")
                result = fallback_fn()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                self.logger.error(f"❌ Local fallback also failed for {operation_type}: {e}")

        return fallback_value

    async def summarize(self, article: Article) -> str:
        async def operation(use_fallback: bool) -> str:
            context = {"title": article.title, "content": text_analysis.prepare_content(article)}
            return await self._call_gemini("summarize", context, use_fallback)

        return await self.execute_with_fallback(
            operation, "summarize", article.title, lambda: text_analysis.basic_summary(article)
        )

    async def categorize(self, article: Article) -> str:
        async def operation(use_fallback: bool) -> str:
            context = {"title": article.title, "content": text_analysis.prepare_content(article)}
            raw = await self._call_gemini("categorize", context, use_fallback)
            return text_analysis.normalize_category(raw.split()[0] if raw.split() else raw)

        def local() -> str:
            category = text_analysis.categorize_by_keywords(article)
            if category == "general" and article.category:
                return article.category
            return category

        return await self.execute_with_fallback(operation, "categorize", "general", local)

    async def extract_info(self, article: Article) -> ExtractedInfo:
        async def operation(use_fallback: bool) -> ExtractedInfo:
            context = {"title": article.title, "content": text_analysis.prepare_content(article)}
            raw = await self._call_gemini("extract_info", context, use_fallback, json_output=True)
            return self._to_extracted_info(self._parse_json(raw))

        def local() -> ExtractedInfo:
            return ExtractedInfo(
                entities=text_analysis.extract_basic_entities(article),
                locations=[],
                topics=[text_analysis.categorize_by_keywords(article)],
                sentiment="neutral",
                importance=5.0,
            )

        return await self.execute_with_fallback(operation, "extractInfo", ExtractedInfo(), local)

    async def score_relevance(self, article: Article, category: str) -> float:
        async def operation(use_fallback: bool) -> float:
            context = {
                "title": article.title,
                "content": text_analysis.prepare_content(article, shorter=True),
                "category": category,
            }
            raw = await self._call_gemini("relevance", context, use_fallback, json_output=True)
            data = self._parse_json(raw)
            try:
                score = float(data["relevanceScore"])
            except (KeyError, TypeError, ValueError) as e:
                raise AIServiceError(f"Invalid relevance payload: {data}") from e
            return min(100.0, max(0.0, score))

        return await self.execute_with_fallback(
            operation, "relevance", 50.0, lambda: text_analysis.keyword_relevance_score(article, category)
        )

    async def is_duplicate(self, article1: Article, article2: Article) -> bool:
        if article1.url and article2.url and article1.url == article2.url:
            return True
        if article1.title == article2.title:
            return True

        async def operation(use_fallback: bool) -> bool:
            context = {
                "title1": article1.title,
                "content1": text_analysis.prepare_content(article1, shorter=True),
                "title2": article2.title,
                "content2": text_analysis.prepare_content(article2, shorter=True),
            }
            raw = await self._call_gemini("duplicate", context, use_fallback)
            return raw.strip().lower().startswith("yes")

        return await self.execute_with_fallback(
            operation, "duplicate", False, lambda: text_analysis.is_basic_duplicate(article1, article2)
        )

    @staticmethod
    def _to_extracted_info(data: Dict[str, Any]) -> ExtractedInfo:
        def as_list(value: Any) -> List[str]:
            if not isinstance(value, list):
                return []
            return [str(item) for item in value if item]

        sentiment = str(data.get("sentiment", "neutral")).lower()
        if sentiment not in SENTIMENTS:
            sentiment = "neutral"
        try:
            importance = float(data.get("importance", 5))
        except (TypeError, ValueError):
            importance = 5.0

        return ExtractedInfo(
            entities=as_list(data.get("entities")),
            locations=as_list(data.get("locations")),
            topics=as_list(data.get("topics")),
            sentiment=sentiment,
            importance=min(10.0, max(1.0, importance)),
        )

    async def test_connection(self) -> bool:
        """Ping the API to validate connectivity and key."""
        if self.client is None:
            return False
        try:
            self.logger.info("🔍 Testing AI service connection...")
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents="ping",
                config=types.GenerateContentConfig(max_output_tokens=10),
            )
            self.logger.info(f"✅ AI service test response: {getattr(response, 'text', None) or 'No content'}")
            return True
        except Exception as e:
            self.logger.error(f"❌ AI service test connection failed: {e}")
            return False
