"""
Local text heuristics used when no AI model is reachable.

Everything here is deterministic and cheap: keyword categorization, naive
entity extraction, keyword-coverage relevance and title-overlap duplicate
detection.
"""

import re
from typing import Dict, List, Optional

from src.models.content import Article


CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "technology": ["tech", "technology", "software", "hardware", "app", "digital", "internet", "cyber", "ai", "robot"],
    "business": ["business", "economy", "market", "stock", "finance", "company", "industry", "trade", "economic"],
    "science": ["science", "research", "study", "discovery", "space", "physics", "chemistry", "biology"],
    "health": ["health", "medical", "doctor", "hospital", "disease", "treatment", "patient", "drug", "vaccine"],
    "entertainment": ["entertainment", "movie", "film", "music", "celebrity", "actor", "actress", "hollywood", "tv", "show"],
    "sports": ["sport", "sports", "game", "player", "team", "match", "tournament", "championship", "olympic",
               "football", "soccer", "basketball"],
    "politics": ["politics", "government", "president", "minister", "election", "vote", "party", "congress",
                 "senate", "parliament"],
    "world": ["world", "international", "global", "foreign", "country", "nation", "diplomatic", "embassy", "border"],
}

GENERAL_KEYWORDS = ["news", "report", "update", "latest", "breaking", "today", "announce", "reveal", "say", "state"]

CATEGORY_ALIASES: Dict[str, str] = {
    "tech": "technology",
    "technology": "technology",
    "business": "business",
    "finance": "business",
    "economy": "business",
    "science": "science",
    "research": "science",
    "health": "health",
    "medical": "health",
    "healthcare": "health",
    "entertainment": "entertainment",
    "media": "entertainment",
    "celebrity": "entertainment",
    "sports": "sports",
    "sport": "sports",
    "politics": "politics",
    "political": "politics",
    "government": "politics",
    "world": "world",
    "international": "world",
    "global": "world",
}

QUOTED_PHRASE = re.compile(r'"([^"]+)"')
CAPITALIZED_PHRASE = re.compile(r"\b([A-Z][a-z]+ [A-Z][a-z]+(?:\s[A-Z][a-z]+)*)\b")
SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

MAX_ENTITIES = 5
DUPLICATE_THRESHOLD = 0.6


def _headline_text(article: Article) -> str:
    return f"{article.title} {article.description or ''}"


def prepare_content(article: Article, shorter: bool = False) -> str:
    """Body text for prompts: prefixed with the title when short, capped at 1500 (or 500) chars."""
    content = article.content or article.description or ""
    if len(content) < 100:
        content = f"{article.title}. {content}"
    max_length = 500 if shorter else 1500
    return content[:max_length]


def normalize_category(raw: Optional[str]) -> str:
    """Map a free-form category label onto the standard set, defaulting to 'general'."""
    if not raw:
        return "general"
    cleaned = raw.strip().strip(".").lower()
    return CATEGORY_ALIASES.get(cleaned, "general")


def categorize_by_keywords(article: Article) -> str:
    """Pick the category whose keywords appear most often; 'general' when nothing matches."""
    text = _headline_text(article).lower()
    best_category, best_score = "general", 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in text)
        if score > best_score:
            best_category, best_score = category, score
    return best_category


def extract_basic_entities(article: Article) -> List[str]:
    text = _headline_text(article)
    entities: List[str] = [phrase for phrase in QUOTED_PHRASE.findall(text) if len(phrase) > 3]
    for phrase in CAPITALIZED_PHRASE.findall(text):
        if phrase not in entities:
            entities.append(phrase)
    return entities[:MAX_ENTITIES]


def keyword_relevance_score(article: Article, category: Optional[str]) -> float:
    """Share of the category's keywords present in title and description, clamped to 30..95."""
    text = _headline_text(article).lower()
    keywords = CATEGORY_KEYWORDS.get((category or "").lower(), GENERAL_KEYWORDS)
    matches = sum(1 for keyword in keywords if keyword in text)
    base_score = matches / len(keywords) * 100
    return min(95.0, max(30.0, base_score))


def title_similarity(title1: str, title2: str) -> float:
    words1 = title1.lower().split()
    words2 = title2.lower().split()
    if not words1 and not words2:
        return 0.0
    matching = sum(1 for word in words1 if len(word) > 3 and word in words2)
    return matching * 2 / (len(words1) + len(words2))


def is_basic_duplicate(article1: Article, article2: Article) -> bool:
    return title_similarity(article1.title or "", article2.title or "") > DUPLICATE_THRESHOLD


def basic_summary(article: Article, max_sentences: int = 2) -> str:
    """Leading sentences of the description or content, else the title."""
    text = (article.description or article.content or "").strip()
    if not text:
        return article.title
    sentences = [s for s in SENTENCE_END.split(text) if s]
    return " ".join(sentences[:max_sentences])
