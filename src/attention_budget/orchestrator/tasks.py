"""Per-post task orchestration.

Every post gets an ordered task list: one authoritative analysis task and a
few text extraction tasks. All tasks start at once and run independently. On
each terminal transition (success or failure) the orchestrator publishes a
``TaskCompletion`` on the post's channel, carrying the accumulated text and a
snapshot of the task list. There is no ordering guarantee between tasks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace

from attention_budget.classification.models import ClassificationResult
from attention_budget.errors import ClassificationPayloadError
from attention_budget.extractors import TaskRunner
from attention_budget.orchestrator.models import (
    AuthoritativeAnalysis,
    Post,
    ResultKind,
    Task,
    TaskCompletion,
    TaskKind,
    TaskStats,
    TaskStatus,
    TextExtraction,
    TextVariant,
    task_kind_slug,
)
from attention_budget.storage.common import now_ms

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRunners:
    """Runner for every task kind."""

    post_text: TaskRunner
    image_description: TaskRunner
    authoritative: TaskRunner
    ocr: TaskRunner | None = None

    def for_kind(self, kind: TaskKind) -> TaskRunner:
        match kind:
            case TextExtraction(variant=TextVariant.POST_TEXT):
                return self.post_text
            case TextExtraction(variant=TextVariant.IMAGE_DESCRIPTION):
                return self.image_description
            case TextExtraction(variant=TextVariant.OCR):
                if self.ocr is None:
                    raise LookupError("No OCR runner configured")
                return self.ocr
            case AuthoritativeAnalysis():
                return self.authoritative
        raise LookupError(f"No runner for task kind {kind!r}")


@dataclass(slots=True)
class PostTasks:
    """In-memory task state of one post."""

    post: Post
    tasks: list[Task] = field(default_factory=list)
    channel: asyncio.Queue[TaskCompletion] = field(default_factory=asyncio.Queue)
    running: set[asyncio.Task[None]] = field(default_factory=set)
    next_sequence: int = 1


class TaskRegistry:
    """Owns the ``post_id -> PostTasks`` mapping."""

    def __init__(self) -> None:
        self._posts: dict[str, PostTasks] = {}

    def get(self, post_id: str) -> PostTasks | None:
        return self._posts.get(post_id)

    def ensure(self, post: Post) -> PostTasks:
        state = self._posts.get(post.id)
        if state is None:
            state = PostTasks(post=post)
            self._posts[post.id] = state
        return state

    def remove(self, post_id: str) -> PostTasks | None:
        return self._posts.pop(post_id, None)

    def post_ids(self) -> list[str]:
        return list(self._posts)

    def __contains__(self, post_id: object) -> bool:
        return post_id in self._posts

    def __len__(self) -> int:
        return len(self._posts)

    def __iter__(self) -> Iterator[PostTasks]:
        return iter(list(self._posts.values()))


def accumulated_text(tasks: list[Task]) -> str:
    """Space-joined results of completed text tasks, in task-list order."""

    return " ".join(
        task.result
        for task in tasks
        if task.status == TaskStatus.COMPLETED
        and task.result_kind == ResultKind.TEXT
        and task.result
    ).strip()


def all_terminal(tasks: list[Task]) -> bool:
    return bool(tasks) and all(task.is_terminal for task in tasks)


def most_recent_authoritative(tasks: list[Task]) -> Task | None:
    """Completed authoritative task with the greatest ``completed_at``; later list position wins ties."""

    best: Task | None = None
    for task in tasks:
        if not (task.is_authoritative and task.status == TaskStatus.COMPLETED and task.result):
            continue
        if best is None or (task.completed_at or 0) >= (best.completed_at or 0):
            best = task
    return best


class TaskOrchestrator:
    """Starts, tracks and reports per-post tasks."""

    def __init__(
        self,
        registry: TaskRegistry,
        runners: TaskRunners,
        *,
        enable_ocr: bool = False,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self.registry = registry
        self.runners = runners
        self.enable_ocr = enable_ocr and runners.ocr is not None
        self._clock = clock
        self._inflight: set[asyncio.Task[None]] = set()

    def initial_kinds(self) -> list[TaskKind]:
        kinds: list[TaskKind] = [
            TextExtraction(TextVariant.POST_TEXT),
            TextExtraction(TextVariant.IMAGE_DESCRIPTION),
        ]
        if self.enable_ocr:
            kinds.append(TextExtraction(TextVariant.OCR))
        kinds.append(AuthoritativeAnalysis())
        return kinds

    def initialize(self, post: Post) -> list[Task]:
        """Register the initial task list for a post and start every task."""

        logger.info("[%s] Initializing task queue", post.id)
        state = self.registry.ensure(post)
        state.post = post
        state.tasks = [
            Task(id=f"{post.id}-{task_kind_slug(kind)}", kind=kind) for kind in self.initial_kinds()
        ]
        for task in state.tasks:
            self._start(state, task)
        return list(state.tasks)

    def add_duplicate_task(self, post: Post, kind: TaskKind) -> Task:
        """Append one more task of ``kind`` and start it; existing tasks keep running."""

        state = self.registry.ensure(post)
        task = Task(id=f"{post.id}-{task_kind_slug(kind)}-{state.next_sequence}", kind=kind)
        state.next_sequence += 1
        state.tasks.append(task)
        logger.info("[%s] Added additional %s task %s", post.id, task_kind_slug(kind), task.id)
        self._start(state, task)
        return task

    def get_tasks(self, post_id: str) -> list[Task]:
        state = self.registry.get(post_id)
        return list(state.tasks) if state is not None else []

    def get_accumulated_text(self, post_id: str, tasks: list[Task] | None = None) -> str:
        return accumulated_text(self._resolve(post_id, tasks))

    def all_tasks_terminal(self, post_id: str, tasks: list[Task] | None = None) -> bool:
        return all_terminal(self._resolve(post_id, tasks))

    def has_authoritative_completed(self, post_id: str, tasks: list[Task] | None = None) -> bool:
        return any(
            task.is_authoritative and task.status == TaskStatus.COMPLETED
            for task in self._resolve(post_id, tasks)
        )

    def has_authoritative_pending(self, post_id: str, tasks: list[Task] | None = None) -> bool:
        """True if any authoritative task is pending or running; ``tasks`` may be persisted snapshots."""

        return any(
            task.is_authoritative and task.status in {TaskStatus.PENDING, TaskStatus.RUNNING}
            for task in self._resolve(post_id, tasks)
        )

    def get_most_recent_authoritative_result(
        self,
        post_id: str,
        tasks: list[Task] | None = None,
    ) -> ClassificationResult | None:
        candidates = self._resolve(post_id, tasks)
        task = most_recent_authoritative(candidates)
        if task is None or task.result is None:
            return None
        completed = sum(
            1 for item in candidates if item.is_authoritative and item.status == TaskStatus.COMPLETED
        )
        logger.info(
            "[%s] Using most recent remote analysis result from %s (%d completed)",
            post_id,
            task.id,
            completed,
        )
        try:
            return ClassificationResult.from_payload(json.loads(task.result))
        except (ValueError, ClassificationPayloadError) as error:
            logger.error("[%s] Failed to parse remote analysis result: %s", post_id, error)
            return None

    def task_stats(self, post_id: str) -> TaskStats:
        stats = TaskStats()
        for task in self.get_tasks(post_id):
            stats.total += 1
            match task.status:
                case TaskStatus.PENDING:
                    stats.pending += 1
                case TaskStatus.RUNNING:
                    stats.running += 1
                case TaskStatus.COMPLETED:
                    stats.completed += 1
                case TaskStatus.FAILED:
                    stats.failed += 1
        return stats

    def events(self, post_id: str) -> asyncio.Queue[TaskCompletion]:
        """Completion channel of a registered post."""

        state = self.registry.get(post_id)
        if state is None:
            raise KeyError(f"Post {post_id!r} has no registered tasks")
        return state.channel

    async def wait_idle(self, post_id: str | None = None) -> None:
        """Wait until no task (of the post, or at all) is in flight."""

        while True:
            if post_id is None:
                pending = set(self._inflight)
            else:
                state = self.registry.get(post_id)
                pending = set(state.running) if state is not None else set()
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def cleanup_post(self, post_id: str) -> None:
        """Forget a post; in-flight tasks keep running and still publish their completion."""

        if self.registry.remove(post_id) is not None:
            logger.info("[%s] Cleaning up tasks", post_id)

    async def shutdown(self) -> None:
        """Cancel everything still in flight."""

        pending = list(self._inflight)
        for running in pending:
            running.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _resolve(self, post_id: str, tasks: list[Task] | None) -> list[Task]:
        return self.get_tasks(post_id) if tasks is None else tasks

    def _start(self, state: PostTasks, task: Task) -> None:
        logger.info("[%s] Starting task: %s", state.post.id, task.id)
        running = asyncio.get_running_loop().create_task(
            self._execute(state, task),
            name=f"task:{task.id}",
        )
        state.running.add(running)
        self._inflight.add(running)
        running.add_done_callback(state.running.discard)
        running.add_done_callback(self._inflight.discard)

    async def _execute(self, state: PostTasks, task: Task) -> None:
        post_id = state.post.id
        task.status = TaskStatus.RUNNING
        task.started_at = self._clock()
        try:
            runner = self.runners.for_kind(task.kind)
            result = await runner(state.post)
        except asyncio.CancelledError:
            task.status = TaskStatus.FAILED
            task.error = "cancelled"
            task.completed_at = self._clock()
            raise
        except Exception as exc:  # noqa: BLE001
            task.status = TaskStatus.FAILED
            task.error = str(exc) or type(exc).__name__
            task.completed_at = self._clock()
            logger.error("[%s] Task failed: %s -> %s", post_id, task.id, task.error)
        else:
            task.status = TaskStatus.COMPLETED
            task.result = result
            task.completed_at = self._clock()
            logger.info("[%s] Task completed: %s -> %r", post_id, task.id, result[:100])

        state.channel.put_nowait(
            TaskCompletion(
                post_id=post_id,
                task=replace(task),
                accumulated_text=accumulated_text(state.tasks),
                tasks=[replace(item) for item in state.tasks],
            ),
        )
