"""Domain models for per-post task orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, assert_never


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ResultKind(str, Enum):
    """What a completed task's result holds."""

    TEXT = "text"
    CLASSIFICATION = "classification"


class TextVariant(str, Enum):
    """Text-producing extraction sources."""

    POST_TEXT = "post-text"
    IMAGE_DESCRIPTION = "image-description"
    OCR = "ocr"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True, slots=True)
class TextExtraction:
    """Task kind producing a text fragment for local classification."""

    variant: TextVariant


@dataclass(frozen=True, slots=True)
class AuthoritativeAnalysis:
    """Task kind producing a full classification from the remote service."""


TaskKind = TextExtraction | AuthoritativeAnalysis

AUTHORITATIVE_SLUG = "remote-analysis"


def task_kind_slug(kind: TaskKind) -> str:
    """Stable string name used in task ids and persisted snapshots."""

    match kind:
        case TextExtraction(variant=variant):
            return variant.value
        case AuthoritativeAnalysis():
            return AUTHORITATIVE_SLUG
        case _:
            assert_never(kind)


def task_kind_from_slug(slug: str) -> TaskKind:
    if slug == AUTHORITATIVE_SLUG:
        return AuthoritativeAnalysis()
    try:
        return TextExtraction(TextVariant(slug))
    except ValueError as error:
        raise ValueError(f"Unknown task kind: {slug!r}") from error


def result_kind_of(kind: TaskKind) -> ResultKind:
    match kind:
        case TextExtraction():
            return ResultKind.TEXT
        case AuthoritativeAnalysis():
            return ResultKind.CLASSIFICATION
        case _:
            assert_never(kind)


@dataclass(slots=True)
class Task:
    """One asynchronous evidence-gathering unit for a post."""

    id: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    result: str | None = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def result_kind(self) -> ResultKind:
        return result_kind_of(self.kind)

    @property
    def is_terminal(self) -> bool:
        return self.status in {TaskStatus.COMPLETED, TaskStatus.FAILED}

    @property
    def is_authoritative(self) -> bool:
        return isinstance(self.kind, AuthoritativeAnalysis)

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe copy mirrored into the persistent store."""

        return {
            "id": self.id,
            "type": task_kind_slug(self.kind),
            "status": self.status.value,
            "result": self.result,
            "result_kind": self.result_kind.value,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any]) -> Task:
        return cls(
            id=str(snapshot["id"]),
            kind=task_kind_from_slug(str(snapshot["type"])),
            status=TaskStatus(snapshot.get("status", TaskStatus.PENDING.value)),
            result=snapshot.get("result"),
            error=snapshot.get("error"),
            started_at=snapshot.get("started_at"),
            completed_at=snapshot.get("completed_at"),
        )


@dataclass(slots=True)
class MediaElement:
    """Media attached to a post."""

    kind: MediaKind
    src: str | None = None


@dataclass(slots=True)
class PostContent:
    """Extracted content of a post."""

    text: str = ""
    author_name: str = ""
    media: list[MediaElement] = field(default_factory=list)

    def images(self) -> list[MediaElement]:
        return [item for item in self.media if item.kind == MediaKind.IMAGE]

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "author_name": self.author_name,
            "media": [{"kind": item.kind.value, "src": item.src} for item in self.media],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PostContent:
        return cls(
            text=str(payload.get("text", "")),
            author_name=str(payload.get("author_name", "")),
            media=[
                MediaElement(kind=MediaKind(item["kind"]), src=item.get("src"))
                for item in payload.get("media", [])
            ],
        )


@dataclass(slots=True)
class Post:
    """A post handed to the orchestrator: stable id, platform and content."""

    id: str
    platform: str
    content: PostContent


@dataclass(slots=True)
class TaskCompletion:
    """Event published once per task terminal transition."""

    post_id: str
    task: Task
    accumulated_text: str
    tasks: list[Task] = field(default_factory=list)


@dataclass(slots=True)
class TaskStats:
    """Task counters for one post."""

    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0


class FailureClass(str, Enum):
    """Normalized failure classes used by the remote retry policy."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    INVALID_RESPONSE = "invalid_response"
    REMOTE_ERROR = "remote_error"
