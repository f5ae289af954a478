from __future__ import annotations

import asyncio

import allure
import pytest

from attention_budget.budgets import DEFAULT_TAXONOMY
from attention_budget.classification import ClassificationResult, LexicalClassifier
from attention_budget.classification.lexical import tokenize
from attention_budget.errors import ClassificationPayloadError

pytestmark = [
    allure.epic("Classification"),
    allure.feature("Results & Local Classifier"),
]


def test_from_payload_derives_missing_totals() -> None:
    result = ClassificationResult.from_payload(
        {
            "Education": {
                "subcategories": {
                    "News, politics, and social concern": {"score": 0.5},
                    "Learning and education": {"score": 0.25},
                },
            },
            "Emotion": {"subcategories": {"Anxiety and fear": {"score": 0.1}}, "totalScore": 0.1},
        },
    )

    assert result.categories["Education"].total_score == pytest.approx(0.75)
    assert result.total_attention_score == pytest.approx(0.85)


def test_from_payload_keeps_explicit_overall_total() -> None:
    result = ClassificationResult.from_payload(
        {
            "Education": {"subcategories": {"Learning and education": {"score": 0.4}}},
            "totalAttentionScore": 2.0,
        },
    )
    assert result.total_attention_score == 2.0


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"Education": "high"},
        {"Education": {"subcategories": {"Learning and education": {"score": "high"}}}},
        {"Education": {"subcategories": {"Learning and education": {"score": True}}}},
    ],
)
def test_from_payload_rejects_malformed_payloads(payload: object) -> None:
    with pytest.raises(ClassificationPayloadError):
        ClassificationResult.from_payload(payload)


def test_to_payload_uses_wire_format() -> None:
    result = ClassificationResult.from_payload(
        {"Emotion": {"subcategories": {"Anxiety and fear": {"score": 0.3}}, "totalScore": 0.3}},
    )

    assert result.to_payload() == {
        "Emotion": {"subcategories": {"Anxiety and fear": {"score": 0.3}}, "totalScore": 0.3},
        "totalAttentionScore": 0.3,
    }


def test_empty_covers_whole_taxonomy() -> None:
    result = ClassificationResult.empty(DEFAULT_TAXONOMY)

    assert set(result.categories) == set(DEFAULT_TAXONOMY)
    assert result.categories["Emotion"].subcategories == {
        "Controversy and clickbait": 0.0,
        "Anxiety and fear": 0.0,
    }
    assert result.total_attention_score == 0.0


def test_tokenize_lowercases_words() -> None:
    assert tokenize("Breaking: Election NEWS, won't stop!") == [
        "breaking",
        "election",
        "news",
        "won't",
        "stop",
    ]


def test_lexical_classifier_scores_keyword_share() -> None:
    classifier = LexicalClassifier()

    result = asyncio.run(classifier.classify("Breaking news election results", DEFAULT_TAXONOMY))

    education = result.categories["Education"]
    assert education.subcategories["News, politics, and social concern"] == 0.5
    assert education.subcategories["Learning and education"] == 0.0
    assert result.categories["Emotion"].subcategories["Controversy and clickbait"] == 0.25
    assert result.total_attention_score == pytest.approx(0.75)


def test_lexical_classifier_returns_zero_result_for_empty_text() -> None:
    result = asyncio.run(LexicalClassifier().classify("   ", DEFAULT_TAXONOMY))
    assert result == ClassificationResult.empty(DEFAULT_TAXONOMY)


def test_lexical_classifier_full_match_scores_one() -> None:
    classifier = LexicalClassifier(keywords={"Fun": ("lol",)})

    result = asyncio.run(classifier.classify("lol", {"Jokes": ["Fun"]}))

    assert result.categories["Jokes"].subcategories["Fun"] == 1.0
