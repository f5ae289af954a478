"""Viewport-gated attention timer.

A tracked post accumulates time only while it is visible and no pause reason
holds (hover, screen shown, tab hidden). Every transition out of that running
state flushes the elapsed interval to the store exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from attention_budget.errors import StoreError
from attention_budget.storage.common import now_ms

logger = logging.getLogger(__name__)


class PauseReason(str, Enum):
    HOVER = "hover"
    SCREEN = "screen"
    TAB_HIDDEN = "tab_hidden"


class TimeStore(Protocol):
    async def update_time_spent(self, post_id: str, delta_ms: float) -> None:
        """Add elapsed milliseconds to the post."""

    async def is_screen_enabled_for_today(self, post_id: str) -> bool:
        """True when the post's budget screen is on today."""


@dataclass(slots=True)
class TrackedPost:
    """In-memory timing state; ``start_time`` 0 means no interval is running."""

    post_id: str
    element: Any
    start_time: float = 0.0
    visible: bool = False
    pauses: set[PauseReason] = field(default_factory=set)

    @property
    def should_run(self) -> bool:
        return self.visible and not self.pauses

    @property
    def running(self) -> bool:
        return self.start_time > 0


@dataclass(slots=True)
class TrackingStats:
    tracked: int = 0
    visible: int = 0
    running: int = 0
    paused: int = 0
    screened: int = 0
    tab_hidden: int = 0


class TrackedPostRegistry:
    """Owns the ``post_id -> TrackedPost`` mapping."""

    def __init__(self) -> None:
        self._posts: dict[str, TrackedPost] = {}

    def get(self, post_id: str) -> TrackedPost | None:
        return self._posts.get(post_id)

    def add(self, tracked: TrackedPost) -> None:
        self._posts[tracked.post_id] = tracked

    def remove(self, post_id: str) -> TrackedPost | None:
        return self._posts.pop(post_id, None)

    def find_by_element(self, element: Any) -> TrackedPost | None:
        for tracked in self._posts.values():
            if tracked.element is element:
                return tracked
        return None

    def __contains__(self, post_id: object) -> bool:
        return post_id in self._posts

    def __len__(self) -> int:
        return len(self._posts)

    def __iter__(self) -> Iterator[TrackedPost]:
        return iter(list(self._posts.values()))


class AttentionTimer:
    """Accumulates viewing time per post and flushes it to the store."""

    def __init__(
        self,
        store: TimeStore,
        *,
        registry: TrackedPostRegistry | None = None,
        clock: Callable[[], float] = now_ms,
        is_attached: Callable[[Any], bool] = lambda element: True,
    ) -> None:
        self._store = store
        self.registry = registry if registry is not None else TrackedPostRegistry()
        self._clock = clock
        self._is_attached = is_attached
        self._tab_hidden = False
        self._background: set[asyncio.Task[None]] = set()

    async def start_tracking(self, post_id: str, element: Any) -> None:
        """Register a post; screened posts start with the screen pause set."""

        existing = self.registry.get(post_id)
        if existing is not None:
            if self._is_attached(existing.element):
                return
            logger.info("[%s] Found stale element reference, cleaning up", post_id)
            self.registry.remove(post_id)

        screened = await self._store.is_screen_enabled_for_today(post_id)
        if post_id in self.registry:
            return
        tracked = TrackedPost(post_id=post_id, element=element)
        if screened:
            tracked.pauses.add(PauseReason.SCREEN)
        if self._tab_hidden:
            tracked.pauses.add(PauseReason.TAB_HIDDEN)
        self.registry.add(tracked)
        logger.info("[%s] Started tracking (screened: %s)", post_id, screened)

    async def stop_tracking(self, post_id: str) -> None:
        tracked = self.registry.remove(post_id)
        if tracked is None:
            return
        logger.info("[%s] Stopping tracking", post_id)
        await self._flush(post_id, self._close_interval(tracked))

    async def stop_all(self) -> None:
        await asyncio.gather(*(self.stop_tracking(tracked.post_id) for tracked in self.registry))

    def on_visibility_change(self, changes: Iterable[tuple[Any, bool]]) -> None:
        """Viewport observer callback; flushes run as background tasks."""

        for element, is_visible in changes:
            tracked = self.registry.find_by_element(element)
            if tracked is None:
                continue
            if not self._is_attached(tracked.element):
                logger.info("[%s] Element detached during visibility change", tracked.post_id)
                self.registry.remove(tracked.post_id)
                continue

            if is_visible and not tracked.visible:
                logger.debug("[%s] Entered viewport", tracked.post_id)
                tracked.visible = True
                self._open_interval(tracked)
            elif not is_visible and tracked.visible:
                logger.debug("[%s] Left viewport", tracked.post_id)
                delta = self._close_interval(tracked)
                tracked.visible = False
                self._spawn_flush(tracked.post_id, delta)

    async def pause(self, post_id: str, reason: PauseReason) -> None:
        tracked = self.registry.get(post_id)
        if tracked is None:
            return
        logger.info("[%s] Pausing tracking (%s)", post_id, reason.value)
        delta = self._close_interval(tracked)
        tracked.pauses.add(reason)
        await self._flush(post_id, delta)

    def resume(self, post_id: str, reason: PauseReason) -> None:
        tracked = self.registry.get(post_id)
        if tracked is None:
            return
        logger.info("[%s] Resuming tracking (%s)", post_id, reason.value)
        tracked.pauses.discard(reason)
        self._open_interval(tracked)

    async def pause_for_hover(self, post_id: str) -> None:
        await self.pause(post_id, PauseReason.HOVER)

    def resume_from_hover(self, post_id: str) -> None:
        self.resume(post_id, PauseReason.HOVER)

    async def pause_for_screen(self, post_id: str) -> None:
        await self.pause(post_id, PauseReason.SCREEN)

    def resume_from_screen(self, post_id: str) -> None:
        self.resume(post_id, PauseReason.SCREEN)

    async def tab_hidden(self) -> None:
        logger.info("Tab became hidden, pausing all timers")
        self._tab_hidden = True
        flushes = []
        for tracked in self.registry:
            delta = self._close_interval(tracked)
            tracked.pauses.add(PauseReason.TAB_HIDDEN)
            flushes.append(self._flush(tracked.post_id, delta))
        await asyncio.gather(*flushes)

    def tab_visible(self) -> None:
        logger.info("Tab became visible, resuming timers")
        self._tab_hidden = False
        for tracked in self.registry:
            tracked.pauses.discard(PauseReason.TAB_HIDDEN)
            self._open_interval(tracked)

    def stats(self) -> TrackingStats:
        stats = TrackingStats()
        for tracked in self.registry:
            stats.tracked += 1
            stats.visible += tracked.visible
            stats.running += tracked.running
            stats.paused += PauseReason.HOVER in tracked.pauses
            stats.screened += PauseReason.SCREEN in tracked.pauses
            stats.tab_hidden += PauseReason.TAB_HIDDEN in tracked.pauses
        return stats

    async def drain(self) -> None:
        """Wait for background flushes scheduled by the visibility callback."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _open_interval(self, tracked: TrackedPost) -> None:
        if tracked.should_run and not tracked.running:
            tracked.start_time = self._clock()

    def _close_interval(self, tracked: TrackedPost) -> float:
        """End the running interval, returning its length; 0 when none was running."""

        if not tracked.running:
            return 0.0
        delta = max(0.0, self._clock() - tracked.start_time)
        tracked.start_time = 0.0
        return delta

    def _spawn_flush(self, post_id: str, delta_ms: float) -> None:
        if delta_ms <= 0:
            return
        flush = asyncio.get_running_loop().create_task(self._flush(post_id, delta_ms))
        self._background.add(flush)
        flush.add_done_callback(self._background.discard)

    async def _flush(self, post_id: str, delta_ms: float) -> None:
        if delta_ms <= 0:
            return
        logger.debug("[%s] Persisting %.0fms", post_id, delta_ms)
        try:
            await self._store.update_time_spent(post_id, delta_ms)
        except StoreError as error:
            logger.error("[%s] Failed to persist time: %s", post_id, error)
