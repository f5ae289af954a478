"""Attention accounting: viewing time and time-weighted classification scores."""

from attention_budget.attention.calculator import (
    AttentionScores,
    DailyUsage,
    compute_attention_scores,
    top_subcategories,
)
from attention_budget.attention.timer import AttentionTimer, PauseReason, TrackedPostRegistry

__all__ = [
    "AttentionScores",
    "AttentionTimer",
    "DailyUsage",
    "PauseReason",
    "TrackedPostRegistry",
    "compute_attention_scores",
    "top_subcategories",
]
