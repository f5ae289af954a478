"""Cheap keyword-overlap classifier used for local incremental classification."""

from __future__ import annotations

import logging
import re

from attention_budget.classification.models import (
    CategoryScore,
    ClassificationResult,
    Taxonomy,
)

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9']+")
_STOPWORDS = frozenset(
    {"a", "an", "and", "the", "of", "or", "to", "in", "on", "for", "with", "is", "are", "it"},
)

DEFAULT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "News, politics, and social concern": (
        "news",
        "election",
        "government",
        "policy",
        "president",
        "vote",
        "senate",
        "protest",
        "climate",
        "rights",
        "law",
        "war",
    ),
    "Learning and education": (
        "learn",
        "learning",
        "education",
        "school",
        "study",
        "research",
        "science",
        "essay",
        "homework",
        "course",
        "tutorial",
        "university",
    ),
    "Celebrities, sports, and culture": (
        "celebrity",
        "movie",
        "music",
        "album",
        "game",
        "match",
        "team",
        "football",
        "basketball",
        "concert",
        "fashion",
        "film",
    ),
    "Humor and amusement": (
        "lol",
        "lmao",
        "funny",
        "joke",
        "meme",
        "hilarious",
        "humor",
        "laugh",
        "comedy",
        "cute",
    ),
    "Controversy and clickbait": (
        "shocking",
        "unbelievable",
        "outrage",
        "exposed",
        "scandal",
        "destroyed",
        "you",
        "won't",
        "believe",
        "breaking",
        "viral",
    ),
    "Anxiety and fear": (
        "fear",
        "scary",
        "danger",
        "crisis",
        "threat",
        "panic",
        "warning",
        "collapse",
        "worried",
        "anxiety",
        "disaster",
    ),
}


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens of the text."""

    return _TOKEN_RE.findall(text.lower())


class LexicalClassifier:
    """Scores subcategories by keyword overlap with the text.

    The score of a subcategory is the share of distinct text tokens that hit
    its keyword set, clamped to ``[0, 1]``. Keywords are the significant
    tokens of the subcategory name plus an optional table of extra keywords.
    """

    def __init__(self, keywords: dict[str, tuple[str, ...]] | None = None) -> None:
        self._keywords = DEFAULT_KEYWORDS if keywords is None else keywords

    async def classify(self, text: str, taxonomy: Taxonomy) -> ClassificationResult:
        tokens = set(tokenize(text))
        if not tokens:
            return ClassificationResult.empty(taxonomy)

        categories: dict[str, CategoryScore] = {}
        for category, subcategories in taxonomy.items():
            scores = {
                subcategory: self._score(tokens, subcategory) for subcategory in subcategories
            }
            categories[category] = CategoryScore(
                subcategories=scores,
                total_score=round(sum(scores.values()), 4),
            )

        result = ClassificationResult.from_categories(categories)
        logger.debug(
            "Lexical classification over %d tokens: total=%.4f",
            len(tokens),
            result.total_attention_score,
        )
        return result

    def _score(self, tokens: set[str], subcategory: str) -> float:
        keywords = self._keywords_for(subcategory)
        if not keywords:
            return 0.0
        hits = len(tokens & keywords)
        return round(min(1.0, hits / len(tokens)), 4)

    def _keywords_for(self, subcategory: str) -> set[str]:
        name_tokens = {
            token for token in tokenize(subcategory) if token not in _STOPWORDS and len(token) > 2
        }
        return name_tokens | set(self._keywords.get(subcategory, ()))
