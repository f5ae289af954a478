"""Entry point for viewed posts: cache lookup, task start-up and time tracking."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from attention_budget.attention.timer import AttentionTimer, TrackingStats
from attention_budget.classification.models import ClassificationResult
from attention_budget.errors import StoreError
from attention_budget.orchestrator.models import AuthoritativeAnalysis, Post
from attention_budget.orchestrator.tasks import TaskOrchestrator
from attention_budget.reconciler import ClassificationReconciler
from attention_budget.storage.models import PostCacheEntry, PostState
from attention_budget.storage.repository import PostRepository, StorageStats

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PostAnalysis:
    """Finished analysis of a post as handed back to the host."""

    id: str
    platform: str
    platform_post_id: str | None
    classification: ClassificationResult
    processed_at: float
    author_name: str

    @classmethod
    def from_entry(cls, entry: PostCacheEntry) -> PostAnalysis:
        if entry.classification is None:
            raise ValueError(f"Post {entry.id!r} has no classification")
        return cls(
            id=entry.id,
            platform=entry.metadata.platform,
            platform_post_id=platform_post_id_of(entry.id),
            classification=entry.classification,
            processed_at=entry.metadata.last_seen,
            author_name=entry.post_data.author_name,
        )


def stable_post_id(
    platform: str,
    author_slug: str,
    platform_post_id: str | None,
    content: str,
) -> str:
    """Id that survives re-rendering: the platform id, or a content hash when it is unknown."""

    if platform_post_id:
        return f"{platform}-{author_slug}-{platform_post_id}"
    digest = hashlib.sha1(  # noqa: S324
        f"{author_slug}:{content}".encode(),
        usedforsecurity=False,
    ).hexdigest()[:12]
    return f"{platform}-{author_slug}-hash-{digest}"


def platform_post_id_of(post_id: str) -> str | None:
    parts = post_id.split("-")
    return parts[2] if len(parts) >= 3 else None


class ContentProcessor:
    def __init__(
        self,
        platform: str,
        store: PostRepository,
        orchestrator: TaskOrchestrator,
        reconciler: ClassificationReconciler,
        timer: AttentionTimer,
        *,
        max_duplicate_authoritative: int = 3,
    ) -> None:
        self.platform = platform
        self._store = store
        self._orchestrator = orchestrator
        self._reconciler = reconciler
        self.timer = timer
        self._max_duplicate_authoritative = max_duplicate_authoritative
        self._duplicates: dict[str, int] = {}
        self._consumers: dict[str, asyncio.Task[None]] = {}

    async def process_post(self, post: Post) -> PostAnalysis | None:
        """Return the cached analysis, or start analysis and return ``None``."""

        try:
            cached = await self._store.get_post(post.id)
        except StoreError as error:
            logger.error("[%s] Could not read cache entry: %s", post.id, error)
            return None

        if cached is not None:
            if cached.has_complete_analysis:
                logger.info("[%s] Using cached analysis", post.id)
                return PostAnalysis.from_entry(cached)
            if cached.state in {PostState.PENDING, PostState.ANALYZING}:
                logger.info("[%s] Analysis already in progress", post.id)
                if self._orchestrator.has_authoritative_pending(post.id, cached.tasks or None):
                    self._add_authoritative_task(post)
                return None

        logger.info("[%s] Starting task-based analysis", post.id)
        try:
            await self._store.create_pending_entry(post.id, post.content, self.platform)
            await self._store.update_post(post.id, {"state": PostState.ANALYZING})
            self._orchestrator.initialize(post)
            self._ensure_consumer(post.id)
        except Exception as error:
            logger.exception("[%s] Processing failed", post.id)
            try:
                await self._store.mark_failed(post.id, str(error) or "Unknown error")
            except StoreError:
                logger.error("[%s] Could not mark post as failed", post.id)
        return None

    async def process_posts(self, posts: list[Post]) -> list[PostAnalysis]:
        logger.info("Processing %d posts", len(posts))
        results = await asyncio.gather(*(self.process_post(post) for post in posts))
        return [result for result in results if result is not None]

    async def get_cached_analysis(self, post: Post) -> PostAnalysis | None:
        cached = await self._store.get_post(post.id)
        if cached is not None and cached.has_complete_analysis:
            return PostAnalysis.from_entry(cached)
        return None

    async def cache_stats(self) -> StorageStats:
        return await self._store.storage_stats()

    async def start_time_tracking(self, post: Post, element: Any) -> None:
        await self.timer.start_tracking(post.id, element)

    async def stop_tracking_post(self, post_id: str) -> None:
        await self.timer.stop_tracking(post_id)
        if not self._consumer_active(post_id):
            self._release(post_id)

    def tracking_stats(self) -> TrackingStats:
        return self.timer.stats()

    async def dismiss_screen(self, post_id: str) -> None:
        await self._reconciler.dismiss_screen(post_id)

    async def cleanup(self) -> None:
        """Stop all time tracking (page navigation or shutdown)."""

        await self.timer.stop_all()
        for post_id in self._orchestrator.registry.post_ids():
            if not self._consumer_active(post_id):
                self._release(post_id)

    async def wait_idle(self) -> None:
        """Wait for every running task and every completion consumer to finish."""

        while True:
            await self._orchestrator.wait_idle()
            pending = [consumer for consumer in self._consumers.values() if not consumer.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    async def shutdown(self) -> None:
        await self._orchestrator.shutdown()
        consumers = list(self._consumers.values())
        for consumer in consumers:
            consumer.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)
        self._consumers.clear()
        await self.timer.drain()

    def _add_authoritative_task(self, post: Post) -> None:
        added = self._duplicates.get(post.id, 0)
        if added >= self._max_duplicate_authoritative:
            logger.warning(
                "[%s] Remote analysis still pending, duplicate limit (%d) reached",
                post.id,
                self._max_duplicate_authoritative,
            )
            return
        logger.info("[%s] Found pending remote analysis task, adding another one", post.id)
        self._orchestrator.add_duplicate_task(post, AuthoritativeAnalysis())
        self._duplicates[post.id] = added + 1
        self._ensure_consumer(post.id)

    def _consumer_active(self, post_id: str) -> bool:
        consumer = self._consumers.get(post_id)
        return consumer is not None and not consumer.done()

    def _ensure_consumer(self, post_id: str) -> None:
        if self._consumer_active(post_id):
            return
        channel = self._orchestrator.events(post_id)
        consumer = asyncio.get_running_loop().create_task(
            self._reconciler.run(post_id, channel),
            name=f"reconcile:{post_id}",
        )
        consumer.add_done_callback(lambda done: self._on_consumer_done(post_id, done))
        self._consumers[post_id] = consumer

    def _on_consumer_done(self, post_id: str, consumer: asyncio.Task[None]) -> None:
        if self._consumers.get(post_id) is not consumer:
            return
        del self._consumers[post_id]
        if self._orchestrator.get_tasks(post_id) and self._orchestrator.all_tasks_terminal(post_id):
            self._release(post_id)

    def _release(self, post_id: str) -> None:
        """Drop per-post in-memory state; persisted snapshots stay in the store."""

        self._orchestrator.cleanup_post(post_id)
        self._reconciler.state.forget(post_id)
        self._duplicates.pop(post_id, None)
