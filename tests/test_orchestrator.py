from __future__ import annotations

import asyncio
import itertools
import json

import allure
import pytest

from attention_budget.errors import RemoteAnalysisError
from attention_budget.orchestrator import (
    AuthoritativeAnalysis,
    Post,
    Task,
    TaskOrchestrator,
    TaskRegistry,
    TaskRunners,
    TaskStatus,
    TextExtraction,
    TextVariant,
)
from attention_budget.orchestrator.models import PostContent, TaskCompletion

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Per-Post Task Lists"),
]


def _post(post_id: str = "twitter-ada-1") -> Post:
    return Post(id=post_id, platform="twitter", content=PostContent(text="hi", author_name="Ada"))


def _classification(score: float) -> str:
    return json.dumps(
        {"Education": {"subcategories": {"Learning and education": {"score": score}}}},
    )


class ControlledRunner:
    """Each call blocks until the test resolves it."""

    def __init__(self) -> None:
        self.calls: list[asyncio.Future[str]] = []

    async def __call__(self, post: Post) -> str:
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.calls.append(future)
        return await future

    async def wait_for_calls(self, count: int) -> None:
        while len(self.calls) < count:
            await asyncio.sleep(0)


async def _offline(post: Post) -> str:
    raise RemoteAnalysisError("offline")


def _orchestrator(runners: TaskRunners, **kwargs) -> TaskOrchestrator:
    counter = itertools.count(1_000)
    return TaskOrchestrator(TaskRegistry(), runners, clock=lambda: float(next(counter)), **kwargs)


async def _drain(channel: asyncio.Queue[TaskCompletion], count: int) -> list[TaskCompletion]:
    return [await asyncio.wait_for(channel.get(), timeout=1) for _ in range(count)]


def test_initialize_builds_fixed_task_list() -> None:
    async def scenario() -> list[Task]:
        orchestrator = _orchestrator(
            TaskRunners(
                post_text=ControlledRunner(),
                image_description=ControlledRunner(),
                authoritative=ControlledRunner(),
                ocr=ControlledRunner(),
            ),
            enable_ocr=True,
        )
        tasks = orchestrator.initialize(_post())
        await orchestrator.shutdown()
        return tasks

    tasks = asyncio.run(scenario())

    assert [task.id for task in tasks] == [
        "twitter-ada-1-post-text",
        "twitter-ada-1-image-description",
        "twitter-ada-1-ocr",
        "twitter-ada-1-remote-analysis",
    ]
    assert tasks[-1].kind == AuthoritativeAnalysis()
    assert tasks[0].kind == TextExtraction(TextVariant.POST_TEXT)


def test_ocr_task_skipped_without_reader() -> None:
    async def scenario() -> list[Task]:
        orchestrator = _orchestrator(
            TaskRunners(
                post_text=ControlledRunner(),
                image_description=ControlledRunner(),
                authoritative=ControlledRunner(),
            ),
            enable_ocr=True,
        )
        tasks = orchestrator.initialize(_post())
        await orchestrator.shutdown()
        return tasks

    assert len(asyncio.run(scenario())) == 3


def test_accumulated_text_follows_task_order_not_completion_order() -> None:
    async def scenario() -> tuple[list[TaskCompletion], str]:
        text_runner, image_runner = ControlledRunner(), ControlledRunner()
        orchestrator = _orchestrator(
            TaskRunners(
                post_text=text_runner,
                image_description=image_runner,
                authoritative=_offline,
            ),
        )
        post = _post()
        orchestrator.initialize(post)
        channel = orchestrator.events(post.id)
        await text_runner.wait_for_calls(1)
        await image_runner.wait_for_calls(1)

        image_runner.calls[0].set_result("a cat on a sofa")
        completions = await _drain(channel, 2)
        text_runner.calls[0].set_result("look at this")
        completions += await _drain(channel, 1)
        return completions, orchestrator.get_accumulated_text(post.id)

    completions, accumulated = asyncio.run(scenario())

    assert completions[0].task.is_authoritative
    assert completions[1].accumulated_text == "a cat on a sofa"
    assert completions[2].accumulated_text == "look at this a cat on a sofa"
    assert accumulated == "look at this a cat on a sofa"


def test_failing_runner_only_fails_its_own_task() -> None:
    async def broken(post: Post) -> str:
        raise ValueError("extractor crashed")

    async def text(post: Post) -> str:
        return "plain text"

    async def scenario() -> tuple[list[TaskCompletion], TaskOrchestrator]:
        orchestrator = _orchestrator(
            TaskRunners(post_text=text, image_description=broken, authoritative=_offline),
        )
        post = _post()
        orchestrator.initialize(post)
        completions = await _drain(orchestrator.events(post.id), 3)
        await orchestrator.wait_idle(post.id)
        return completions, orchestrator

    completions, orchestrator = asyncio.run(scenario())

    statuses = {completion.task.id: completion.task.status for completion in completions}
    assert statuses == {
        "twitter-ada-1-post-text": TaskStatus.COMPLETED,
        "twitter-ada-1-image-description": TaskStatus.FAILED,
        "twitter-ada-1-remote-analysis": TaskStatus.FAILED,
    }
    failed = next(c.task for c in completions if c.task.id.endswith("image-description"))
    assert failed.error == "extractor crashed"
    assert failed.completed_at is not None
    assert orchestrator.all_tasks_terminal("twitter-ada-1")
    stats = orchestrator.task_stats("twitter-ada-1")
    assert (stats.total, stats.completed, stats.failed) == (3, 1, 2)


def test_completion_carries_task_list_snapshot() -> None:
    async def text(post: Post) -> str:
        return "plain text"

    async def scenario() -> TaskCompletion:
        remote = ControlledRunner()
        orchestrator = _orchestrator(
            TaskRunners(post_text=text, image_description=text, authoritative=remote),
        )
        post = _post()
        orchestrator.initialize(post)
        first = (await _drain(orchestrator.events(post.id), 1))[0]
        await remote.wait_for_calls(1)
        remote.calls[0].set_result(_classification(0.1))
        await orchestrator.wait_idle()
        return first

    first = asyncio.run(scenario())

    remote_snapshot = next(task for task in first.tasks if task.is_authoritative)
    assert not remote_snapshot.is_terminal
    assert first.task.status == TaskStatus.COMPLETED


def test_duplicate_authoritative_tasks_most_recent_completion_wins() -> None:
    async def text(post: Post) -> str:
        return ""

    async def scenario() -> tuple[TaskOrchestrator, list[Task]]:
        remote = ControlledRunner()
        orchestrator = _orchestrator(
            TaskRunners(post_text=text, image_description=text, authoritative=remote),
        )
        post = _post()
        orchestrator.initialize(post)
        duplicate = orchestrator.add_duplicate_task(post, AuthoritativeAnalysis())
        second = orchestrator.add_duplicate_task(post, AuthoritativeAnalysis())
        assert duplicate.id == "twitter-ada-1-remote-analysis-1"
        assert second.id == "twitter-ada-1-remote-analysis-2"
        await remote.wait_for_calls(3)

        remote.calls[1].set_result(_classification(0.9))
        await _drain(orchestrator.events(post.id), 3)
        assert orchestrator.has_authoritative_pending(post.id)
        remote.calls[0].set_result(_classification(0.3))
        await _drain(orchestrator.events(post.id), 1)
        remote.calls[2].set_exception(RemoteAnalysisError("HTTP error! status: 500"))
        await _drain(orchestrator.events(post.id), 1)
        return orchestrator, orchestrator.get_tasks(post.id)

    orchestrator, tasks = asyncio.run(scenario())

    assert [task.status for task in tasks if task.is_authoritative] == [
        TaskStatus.COMPLETED,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    ]
    result = orchestrator.get_most_recent_authoritative_result("twitter-ada-1")
    assert result is not None
    assert result.categories["Education"].subcategories["Learning and education"] == 0.3
    assert not orchestrator.has_authoritative_pending("twitter-ada-1")
    assert orchestrator.has_authoritative_completed("twitter-ada-1")


def test_unparseable_authoritative_result_yields_none() -> None:
    tasks = [
        Task(
            id="p-remote-analysis",
            kind=AuthoritativeAnalysis(),
            status=TaskStatus.COMPLETED,
            result="not json",
            completed_at=5.0,
        ),
    ]
    orchestrator = _orchestrator(
        TaskRunners(post_text=_offline, image_description=_offline, authoritative=_offline),
    )

    assert orchestrator.get_most_recent_authoritative_result("p", tasks) is None


def test_pending_check_accepts_persisted_snapshots() -> None:
    orchestrator = _orchestrator(
        TaskRunners(post_text=_offline, image_description=_offline, authoritative=_offline),
    )
    snapshots = [
        Task(
            id="p-post-text",
            kind=TextExtraction(TextVariant.POST_TEXT),
            status=TaskStatus.COMPLETED,
        ),
        Task(id="p-remote-analysis", kind=AuthoritativeAnalysis(), status=TaskStatus.RUNNING),
    ]

    assert orchestrator.has_authoritative_pending("p", snapshots)
    assert not orchestrator.has_authoritative_pending("p")
    assert not orchestrator.all_tasks_terminal("p")
    assert not orchestrator.all_tasks_terminal("p", snapshots)


def test_cleanup_keeps_in_flight_tasks_publishing() -> None:
    async def scenario() -> tuple[TaskCompletion, list[Task]]:
        runner = ControlledRunner()
        orchestrator = _orchestrator(
            TaskRunners(post_text=runner, image_description=runner, authoritative=runner),
        )
        post = _post()
        orchestrator.initialize(post)
        channel = orchestrator.events(post.id)
        await runner.wait_for_calls(3)
        orchestrator.cleanup_post(post.id)
        runner.calls[0].set_result("late text")
        completion = (await _drain(channel, 1))[0]
        await orchestrator.shutdown()
        return completion, orchestrator.get_tasks(post.id)

    completion, tasks = asyncio.run(scenario())

    assert completion.accumulated_text == "late text"
    assert len(completion.tasks) == 3
    assert tasks == []


def test_events_requires_registered_post() -> None:
    orchestrator = _orchestrator(
        TaskRunners(post_text=_offline, image_description=_offline, authoritative=_offline),
    )
    with pytest.raises(KeyError):
        orchestrator.events("missing")
