"""Classification adapters and result types."""

from __future__ import annotations

from typing import Protocol

from attention_budget.classification.lexical import LexicalClassifier
from attention_budget.classification.models import (
    CategoryScore,
    ClassificationResult,
    Taxonomy,
)


class ClassificationAdapter(Protocol):
    """Protocol implemented by text classifiers.

    Failures raise ``ClassificationError``; implementations never fall back to
    a default result on their own.
    """

    async def classify(self, text: str, taxonomy: Taxonomy) -> ClassificationResult:
        """Classify text into the taxonomy."""


__all__ = [
    "CategoryScore",
    "ClassificationAdapter",
    "ClassificationResult",
    "LexicalClassifier",
    "Taxonomy",
]
