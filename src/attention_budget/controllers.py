"""Controllers for attention-budget CLI commands."""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from attention_budget.attention.calculator import top_subcategories
from attention_budget.attention.timer import AttentionTimer
from attention_budget.budgets import BudgetProvider, SettingsRepository
from attention_budget.classification.lexical import LexicalClassifier
from attention_budget.config import Settings
from attention_budget.extractors import (
    ImageDescriptionExtractor,
    RemoteAnalysisRunner,
    extract_post_text,
)
from attention_budget.orchestrator.models import MediaElement, MediaKind, Post, PostContent
from attention_budget.orchestrator.remote import (
    AnalysisPayload,
    RemoteAnalysisResponse,
    RemotePollPolicy,
    RemoteStatus,
)
from attention_budget.orchestrator.tasks import TaskOrchestrator, TaskRegistry, TaskRunners
from attention_budget.processor import ContentProcessor, stable_post_id
from attention_budget.reconciler import ClassificationReconciler
from attention_budget.screen import LoggingScreenController
from attention_budget.storage.models import PostCacheEntry, PostState
from attention_budget.storage.repository import PostRepository

SIMULATED_PLATFORM = "simulated"


@dataclass(slots=True)
class PostsListCommand:
    """CLI inputs for posts list command."""

    db_path: Path | None
    state: str | None
    limit: int


@dataclass(slots=True)
class PostShowCommand:
    """CLI inputs for posts show command."""

    db_path: Path | None
    post_id: str


@dataclass(slots=True)
class BudgetSetCommand:
    """CLI inputs for budgets set command."""

    db_path: Path | None
    category: str
    minutes: float
    subcategory: str | None


@dataclass(slots=True)
class SimulateCommand:
    """CLI inputs for simulate command."""

    db_path: Path | None
    text: str
    author: str
    image_captions: tuple[str, ...]
    remote: bool


class AttentionCliController:
    """Coordinates CLI command execution."""

    def list_posts(self, command: PostsListCommand) -> list[str]:
        settings = _settings(command.db_path)
        entries = asyncio.run(_all_posts(settings))
        if command.state:
            entries = [entry for entry in entries if entry.state.value == command.state]
        entries = entries[: command.limit]
        if not entries:
            return ["No posts stored."]
        return [_post_summary(entry) for entry in entries]

    def show_post(self, command: PostShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        entry = asyncio.run(_one_post(settings, command.post_id))
        if entry is None:
            return [f"Post not found: {command.post_id}"]
        return _post_details(entry)

    def clear_posts(self, db_path: Path | None) -> list[str]:
        settings = _settings(db_path)
        asyncio.run(_clear_posts(settings))
        return ["All posts cleared."]

    def stats(self, db_path: Path | None) -> list[str]:
        settings = _settings(db_path)
        return asyncio.run(_stats(settings))

    def show_budgets(self, db_path: Path | None) -> list[str]:
        settings = _settings(db_path)
        return asyncio.run(_show_budgets(settings))

    def set_budget(self, command: BudgetSetCommand) -> list[str]:
        settings = _settings(command.db_path)
        asyncio.run(_set_budget(settings, command))
        target = (
            f"{command.category}/{command.subcategory}" if command.subcategory else command.category
        )
        return [f"Budget for {target} set to {command.minutes:g} minutes."]

    def reset_budgets(self, db_path: Path | None) -> list[str]:
        settings = _settings(db_path)
        asyncio.run(_reset_budgets(settings))
        return ["Budgets reset to defaults."]

    def simulate(self, command: SimulateCommand) -> list[str]:
        settings = _settings(command.db_path)
        return asyncio.run(_simulate(settings, command))


class DemoCaptioner:
    """Returns fixed captions keyed by image source."""

    def __init__(self, captions: dict[str, str]) -> None:
        self._captions = captions

    async def describe(self, image: MediaElement, post_id: str) -> str:
        if image.src not in self._captions:
            raise LookupError(f"no caption for {image.src}")
        return self._captions[image.src]


class DemoRemoteTransport:
    """Answers ``processing`` once, then classifies the payload and any captions lexically."""

    def __init__(self, budgets: BudgetProvider, captions: dict[str, str]) -> None:
        self._budgets = budgets
        self._captions = captions
        self._classifier = LexicalClassifier()
        self.requests = 0

    async def request(self, payload: AnalysisPayload) -> RemoteAnalysisResponse:
        self.requests += 1
        if self.requests == 1:
            return RemoteAnalysisResponse(status=RemoteStatus.PROCESSING, retry_after_seconds=0)
        text = " ".join(
            [payload.text, *(self._captions.get(src, "") for src in payload.media_elements)],
        )
        classification = await self._classifier.classify(text, await self._budgets.get_taxonomy())
        return RemoteAnalysisResponse(
            status=RemoteStatus.COMPLETED,
            classification=classification.to_payload(),
        )


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@asynccontextmanager
async def _repositories(
    settings: Settings,
) -> AsyncIterator[tuple[PostRepository, SettingsRepository]]:
    store = PostRepository(settings.store.db_path, busy_timeout_ms=settings.store.busy_timeout_ms)
    budgets = SettingsRepository(
        settings.store.db_path,
        busy_timeout_ms=settings.store.busy_timeout_ms,
    )
    try:
        store.init_schema()
        yield store, budgets
    finally:
        store.close()
        budgets.close()


async def _all_posts(settings: Settings) -> list[PostCacheEntry]:
    async with _repositories(settings) as (store, _):
        return await store.get_all_posts()


async def _one_post(settings: Settings, post_id: str) -> PostCacheEntry | None:
    async with _repositories(settings) as (store, _):
        return await store.get_post(post_id)


async def _clear_posts(settings: Settings) -> None:
    async with _repositories(settings) as (store, _):
        await store.clear_all()


async def _stats(settings: Settings) -> list[str]:
    async with _repositories(settings) as (store, budgets):
        stats = await store.storage_stats()
        usage = await store.today_analytics()
        limits = await budgets.get_budgets()

    lines = [
        "Posts: "
        f"total={stats.total_posts} complete={stats.complete_analyses} "
        f"pending={stats.pending_analyses} failed={stats.failed_analyses}",
        f"Today: posts={usage.posts} attention={usage.total_seconds:.1f}s",
    ]
    for name, budget in limits.items():
        consumed = usage.category_seconds(name)
        lines.append(
            f"  {name}: {consumed:.1f}s of {budget.total_seconds:.0f}s "
            f"({_percent(consumed, budget.total_seconds)})",
        )
        for subcategory, minutes in budget.subcategories.items():
            consumed_sub = usage.subcategory_seconds(name, subcategory)
            lines.append(
                f"    {subcategory}: {consumed_sub:.1f}s of {minutes * 60:.0f}s "
                f"({_percent(consumed_sub, minutes * 60)})",
            )
    return lines


async def _show_budgets(settings: Settings) -> list[str]:
    async with _repositories(settings) as (_, budgets):
        limits = await budgets.get_budgets()
    lines: list[str] = []
    for name, budget in limits.items():
        lines.append(f"{name}: {budget.total_minutes:g} min")
        lines.extend(
            f"  {subcategory}: {minutes:g} min"
            for subcategory, minutes in budget.subcategories.items()
        )
    return lines


async def _set_budget(settings: Settings, command: BudgetSetCommand) -> None:
    async with _repositories(settings) as (_, budgets):
        if command.subcategory:
            await budgets.set_subcategory_budget(
                command.category,
                command.subcategory,
                command.minutes,
            )
        else:
            await budgets.set_category_budget(command.category, command.minutes)


async def _reset_budgets(settings: Settings) -> None:
    async with _repositories(settings) as (_, budgets):
        await budgets.reset_to_defaults()


async def _simulate(settings: Settings, command: SimulateCommand) -> list[str]:
    media = [
        MediaElement(kind=MediaKind.IMAGE, src=f"demo://image/{index}")
        for index in range(len(command.image_captions))
    ]
    captions = {
        item.src or "": caption
        for item, caption in zip(media, command.image_captions, strict=True)
    }
    author_slug = re.sub(r"[^a-z0-9]+", "", command.author.lower()) or "anonymous"
    post = Post(
        id=stable_post_id(SIMULATED_PLATFORM, author_slug, None, command.text),
        platform=SIMULATED_PLATFORM,
        content=PostContent(text=command.text, author_name=command.author, media=media),
    )

    async with _repositories(settings) as (store, budgets):
        screen = LoggingScreenController()
        timer = AttentionTimer(store)
        runners = TaskRunners(
            post_text=extract_post_text,
            image_description=ImageDescriptionExtractor(
                DemoCaptioner(captions),
                status_source=store,
                delay_seconds=0,
            ),
            authoritative=(
                RemoteAnalysisRunner(
                    DemoRemoteTransport(budgets, captions),
                    budgets,
                    policy=RemotePollPolicy(max_attempts=5, default_retry_seconds=0),
                    payload_max_chars=settings.remote.payload_max_chars,
                )
                if command.remote
                else _remote_disabled
            ),
        )
        orchestrator = TaskOrchestrator(TaskRegistry(), runners)
        reconciler = ClassificationReconciler(
            orchestrator,
            store,
            LexicalClassifier(),
            budgets,
            screen,
            timer,
            settings.screening,
        )
        processor = ContentProcessor(
            SIMULATED_PLATFORM,
            store,
            orchestrator,
            reconciler,
            timer,
            max_duplicate_authoritative=settings.orchestrator.max_duplicate_authoritative,
        )
        await processor.process_post(post)
        await processor.wait_idle()
        entry = await store.get_post(post.id)

    if entry is None:
        return [f"Post {post.id} was not stored."]
    lines = _post_details(entry)
    lines.append(f"Screened: {'yes' if post.id in screen.screened else 'no'}")
    return lines


async def _remote_disabled(post: Post) -> str:
    raise RuntimeError("remote analysis disabled")


def _post_summary(entry: PostCacheEntry) -> str:
    total = entry.classification.total_attention_score if entry.classification else 0.0
    return (
        f"{entry.id} state={entry.state.value} platform={entry.metadata.platform} "
        f"time_spent={entry.time_spent_seconds:.1f}s score={total:.3f}"
    )


def _post_details(entry: PostCacheEntry) -> list[str]:
    lines = [
        f"Post: {entry.id}",
        f"State: {entry.state.value}",
        f"Platform: {entry.metadata.platform}",
        f"Author: {entry.post_data.author_name or '-'}",
        f"Time spent: {entry.time_spent_seconds:.1f}s",
        f"Accumulated text: {entry.accumulated_text or '-'}",
    ]
    if entry.state == PostState.FAILED and entry.debug.get("last_error"):
        lines.append(f"Last error: {entry.debug['last_error']}")
    lines.append("Tasks:")
    lines.extend(
        f"  {task.id} status={task.status.value}"
        + (f" error={task.error}" if task.error else "")
        for task in entry.tasks
    )
    if entry.classification is None:
        lines.append("Classification: -")
        return lines
    lines.append(f"Classification (total={entry.classification.total_attention_score:.3f}):")
    for name, category in entry.classification.categories.items():
        lines.append(f"  {name}: {category.total_score:.3f}")
        lines.extend(
            f"    {subcategory}: {score:.3f}"
            for subcategory, score in category.subcategories.items()
        )
    ranked = top_subcategories(entry.classification, entry.time_spent_seconds)
    if entry.time_spent_seconds > 0 and ranked:
        lines.append("Top attention:")
        lines.extend(
            f"  {item.category}/{item.name}: {item.attention_score:.1f}" for item in ranked
        )
    return lines


def _percent(consumed: float, allowed: float) -> str:
    if allowed <= 0:
        return "-"
    return f"{consumed / allowed:.0%}"
