"""Attention scores: classification scores weighted by time spent."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from attention_budget.classification.models import CategoryScore, ClassificationResult


@dataclass(slots=True)
class SubcategoryAttention:
    attention_score: float
    classification_score: float


@dataclass(slots=True)
class CategoryAttention:
    subcategories: dict[str, SubcategoryAttention] = field(default_factory=dict)
    total_score: float = 0.0


@dataclass(slots=True)
class AttentionScores:
    """Per-post attention: every subcategory score multiplied by seconds viewed."""

    categories: dict[str, CategoryAttention] = field(default_factory=dict)
    total_attention_score: float = 0.0


@dataclass(slots=True)
class RankedSubcategory:
    name: str
    category: str
    attention_score: float


@dataclass(slots=True)
class DailyUsage:
    """Attention-seconds consumed today, per category and subcategory."""

    categories: dict[str, CategoryScore] = field(default_factory=dict)
    total_seconds: float = 0.0
    posts: int = 0

    def category_seconds(self, category: str) -> float:
        usage = self.categories.get(category)
        return usage.total_score if usage is not None else 0.0

    def subcategory_seconds(self, category: str, subcategory: str) -> float:
        usage = self.categories.get(category)
        if usage is None:
            return 0.0
        return usage.subcategories.get(subcategory, 0.0)


def compute_attention_scores(
    classification: ClassificationResult,
    time_spent_seconds: float,
) -> AttentionScores:
    categories: dict[str, CategoryAttention] = {}
    total = 0.0
    for category_name, category in classification.categories.items():
        computed = CategoryAttention()
        for subcategory_name, score in category.subcategories.items():
            attention = score * time_spent_seconds
            computed.subcategories[subcategory_name] = SubcategoryAttention(
                attention_score=attention,
                classification_score=score,
            )
            computed.total_score += attention
        categories[category_name] = computed
        total += computed.total_score
    return AttentionScores(categories=categories, total_attention_score=total)


def category_summary(
    classification: ClassificationResult,
    time_spent_seconds: float,
) -> dict[str, float]:
    computed = compute_attention_scores(classification, time_spent_seconds)
    return {name: category.total_score for name, category in computed.categories.items()}


def top_subcategories(
    classification: ClassificationResult,
    time_spent_seconds: float,
    limit: int = 3,
) -> list[RankedSubcategory]:
    """Subcategories that captured the most attention, highest first."""

    computed = compute_attention_scores(classification, time_spent_seconds)
    ranked = [
        RankedSubcategory(
            name=subcategory_name,
            category=category_name,
            attention_score=subcategory.attention_score,
        )
        for category_name, category in computed.categories.items()
        for subcategory_name, subcategory in category.subcategories.items()
    ]
    ranked.sort(key=lambda item: item.attention_score, reverse=True)
    return ranked[:limit]


def aggregate_daily_usage(
    entries: Iterable[tuple[ClassificationResult, float]],
) -> DailyUsage:
    """Sum attention-seconds over ``(classification, seconds viewed)`` pairs."""

    usage = DailyUsage()
    for classification, seconds in entries:
        usage.posts += 1
        computed = compute_attention_scores(classification, seconds)
        for category_name, category in computed.categories.items():
            bucket = usage.categories.setdefault(category_name, CategoryScore())
            bucket.total_score += category.total_score
            for subcategory_name, subcategory in category.subcategories.items():
                bucket.subcategories[subcategory_name] = (
                    bucket.subcategories.get(subcategory_name, 0.0) + subcategory.attention_score
                )
        usage.total_seconds += computed.total_attention_score
    return usage
