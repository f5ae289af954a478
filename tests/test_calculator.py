from __future__ import annotations

import allure
import pytest

from attention_budget.attention import compute_attention_scores, top_subcategories
from attention_budget.attention.calculator import aggregate_daily_usage, category_summary
from attention_budget.classification import ClassificationResult

pytestmark = [
    allure.epic("Attention"),
    allure.feature("Attention Scores"),
]

CLASSIFICATION = ClassificationResult.from_payload(
    {
        "Education": {
            "subcategories": {
                "News, politics, and social concern": {"score": 0.6},
                "Learning and education": {"score": 0.1},
            },
        },
        "Emotion": {"subcategories": {"Anxiety and fear": {"score": 0.3}}},
    },
)


def test_scores_are_weighted_by_seconds() -> None:
    scores = compute_attention_scores(CLASSIFICATION, 10.0)

    news = scores.categories["Education"].subcategories["News, politics, and social concern"]
    assert news.attention_score == pytest.approx(6.0)
    assert news.classification_score == 0.6
    assert scores.categories["Education"].total_score == pytest.approx(7.0)
    assert scores.total_attention_score == pytest.approx(10.0)


def test_zero_time_gives_zero_attention() -> None:
    assert compute_attention_scores(CLASSIFICATION, 0).total_attention_score == 0


def test_category_summary() -> None:
    assert category_summary(CLASSIFICATION, 2.0) == pytest.approx(
        {"Education": 1.4, "Emotion": 0.6},
    )


def test_top_subcategories_ranked_by_attention() -> None:
    ranked = top_subcategories(CLASSIFICATION, 10.0, limit=2)

    assert [(item.category, item.name) for item in ranked] == [
        ("Education", "News, politics, and social concern"),
        ("Emotion", "Anxiety and fear"),
    ]


def test_daily_usage_sums_over_posts() -> None:
    usage = aggregate_daily_usage([(CLASSIFICATION, 10.0), (CLASSIFICATION, 5.0)])

    assert usage.posts == 2
    assert usage.category_seconds("Emotion") == pytest.approx(4.5)
    assert usage.subcategory_seconds("Education", "Learning and education") == pytest.approx(1.5)
    assert usage.subcategory_seconds("Entertainment", "Humor and amusement") == 0.0
    assert usage.total_seconds == pytest.approx(15.0)
