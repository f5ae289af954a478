"""Per-post task orchestration and authoritative remote analysis.

Each post runs a fixed set of independent evidence-gathering tasks: text
extractors feeding a local classifier, and one authoritative analysis whose
result wins over any local one. Tasks are started together, never wait on
each other, and report terminal transitions on a per-post completion channel.
"""

from attention_budget.orchestrator.models import (
    AuthoritativeAnalysis,
    Post,
    Task,
    TaskCompletion,
    TaskKind,
    TaskStatus,
    TextExtraction,
    TextVariant,
)
from attention_budget.orchestrator.tasks import TaskOrchestrator, TaskRegistry, TaskRunners

__all__ = [
    "AuthoritativeAnalysis",
    "Post",
    "Task",
    "TaskCompletion",
    "TaskKind",
    "TaskOrchestrator",
    "TaskRegistry",
    "TaskRunners",
    "TaskStatus",
    "TextExtraction",
    "TextVariant",
]
