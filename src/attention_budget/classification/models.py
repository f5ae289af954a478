"""Classification result types and their wire/storage format."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from attention_budget.errors import ClassificationPayloadError

TOTAL_ATTENTION_KEY = "totalAttentionScore"

Taxonomy = Mapping[str, list[str]]


@dataclass(slots=True)
class CategoryScore:
    """Per-category subcategory scores and their sum."""

    subcategories: dict[str, float] = field(default_factory=dict)
    total_score: float = 0.0


@dataclass(slots=True)
class ClassificationResult:
    """Category scores for one post plus the derived overall total."""

    categories: dict[str, CategoryScore] = field(default_factory=dict)
    total_attention_score: float = 0.0

    @classmethod
    def from_categories(cls, categories: dict[str, CategoryScore]) -> ClassificationResult:
        """Build a result, deriving the overall total from category totals."""

        total = sum(category.total_score for category in categories.values())
        return cls(categories=categories, total_attention_score=total)

    @classmethod
    def empty(cls, taxonomy: Taxonomy) -> ClassificationResult:
        """All-zero result covering every category and subcategory of the taxonomy."""

        return cls.from_categories(
            {
                category: CategoryScore(
                    subcategories=dict.fromkeys(subcategories, 0.0),
                    total_score=0.0,
                )
                for category, subcategories in taxonomy.items()
            },
        )

    @classmethod
    def from_payload(cls, payload: Any) -> ClassificationResult:
        """Parse the JSON payload produced by classifiers and the remote service."""

        if not isinstance(payload, Mapping):
            raise ClassificationPayloadError(
                f"Classification payload must be an object, got {type(payload).__name__}",
            )

        categories: dict[str, CategoryScore] = {}
        for name, raw_category in payload.items():
            if name == TOTAL_ATTENTION_KEY:
                continue
            categories[str(name)] = _parse_category(str(name), raw_category)

        raw_total = payload.get(TOTAL_ATTENTION_KEY)
        if raw_total is None:
            return cls.from_categories(categories)
        return cls(
            categories=categories,
            total_attention_score=_as_float(raw_total, name=TOTAL_ATTENTION_KEY),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            name: {
                "subcategories": {
                    sub_name: {"score": score} for sub_name, score in category.subcategories.items()
                },
                "totalScore": category.total_score,
            }
            for name, category in self.categories.items()
        }
        payload[TOTAL_ATTENTION_KEY] = self.total_attention_score
        return payload


def _parse_category(name: str, raw: Any) -> CategoryScore:
    if not isinstance(raw, Mapping):
        raise ClassificationPayloadError(f"Category {name!r} must be an object")

    raw_subcategories = raw.get("subcategories", {})
    if not isinstance(raw_subcategories, Mapping):
        raise ClassificationPayloadError(f"Category {name!r} subcategories must be an object")

    subcategories: dict[str, float] = {}
    for sub_name, raw_sub in raw_subcategories.items():
        value = raw_sub.get("score") if isinstance(raw_sub, Mapping) else raw_sub
        subcategories[str(sub_name)] = _as_float(value, name=f"{name}/{sub_name}")

    raw_total = raw.get("totalScore")
    total = (
        sum(subcategories.values())
        if raw_total is None
        else _as_float(raw_total, name=f"{name}.totalScore")
    )
    return CategoryScore(subcategories=subcategories, total_score=total)


def _as_float(value: Any, *, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ClassificationPayloadError(f"Score {name!r} must be a number, got {value!r}")
    return float(value)
