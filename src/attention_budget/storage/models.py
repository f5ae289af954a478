"""Post cache entry: the persisted view of one post's analysis and attention."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from attention_budget.classification.models import ClassificationResult
from attention_budget.orchestrator.models import PostContent, Task


class PostState(str, Enum):
    """Analysis lifecycle of a post."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(slots=True)
class ScreenStatus:
    """Whether the budget screen is enabled, and when that was decided."""

    enabled: bool
    last_updated: float


@dataclass(slots=True)
class PostMetadata:
    """Per-post bookkeeping; ``time_spent`` is in milliseconds."""

    last_seen: float
    time_spent: float = 0.0
    platform: str = "unknown"
    screen_status: ScreenStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_seen": self.last_seen,
            "time_spent": self.time_spent,
            "platform": self.platform,
            "screen_status": (
                None
                if self.screen_status is None
                else {
                    "enabled": self.screen_status.enabled,
                    "last_updated": self.screen_status.last_updated,
                }
            ),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PostMetadata:
        raw_screen = payload.get("screen_status")
        if isinstance(raw_screen, ScreenStatus):
            screen_status: ScreenStatus | None = raw_screen
        elif raw_screen:
            screen_status = ScreenStatus(
                enabled=bool(raw_screen["enabled"]),
                last_updated=float(raw_screen["last_updated"]),
            )
        else:
            screen_status = None
        return cls(
            last_seen=float(payload.get("last_seen", 0.0)),
            time_spent=float(payload.get("time_spent", 0.0)),
            platform=str(payload.get("platform", "unknown")),
            screen_status=screen_status,
        )


@dataclass(slots=True)
class PostCacheEntry:
    """Stored analysis state for one post."""

    id: str
    post_data: PostContent
    metadata: PostMetadata
    classification: ClassificationResult | None = None
    state: PostState = PostState.PENDING
    tasks: list[Task] = field(default_factory=list)
    accumulated_text: str = ""
    last_classification_text: str = ""
    artifacts: dict[str, Any] = field(default_factory=dict)
    debug: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def pending(
        cls,
        post_id: str,
        *,
        post_data: PostContent,
        platform: str,
        now: float,
    ) -> PostCacheEntry:
        return cls(
            id=post_id,
            post_data=post_data,
            metadata=PostMetadata(last_seen=now, time_spent=0.0, platform=platform),
            artifacts={"overlay_id": f"overlay-{post_id}"},
        )

    @property
    def has_complete_analysis(self) -> bool:
        return self.state == PostState.COMPLETE and self.classification is not None

    @property
    def time_spent_seconds(self) -> float:
        return self.metadata.time_spent / 1000.0
