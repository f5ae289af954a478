"""Post cache repository backed by SQLModel + SQLite.

Every public operation is a coroutine that runs its blocking database work in
a worker thread. Updates are read-modify-write without cross-call
transactions: two concurrent updates of the same post may lose one of them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, col, select

from attention_budget.attention.calculator import DailyUsage, aggregate_daily_usage
from attention_budget.classification.models import ClassificationResult
from attention_budget.errors import StoreError
from attention_budget.orchestrator.models import PostContent, Task
from attention_budget.storage.common import build_sqlite_engine, local_date, now_ms, utc_now
from attention_budget.storage.models import (
    PostCacheEntry,
    PostMetadata,
    PostState,
    ScreenStatus,
)
from attention_budget.storage.sqlmodel_models import PostRow

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_DEEP_MERGE_FIELDS = frozenset({"metadata", "artifacts", "debug"})
_UPDATABLE_FIELDS = frozenset(
    {
        "post_data",
        "classification",
        "state",
        "tasks",
        "accumulated_text",
        "last_classification_text",
        "metadata",
        "artifacts",
        "debug",
    },
)


@dataclass(slots=True)
class StorageStats:
    total_posts: int
    complete_analyses: int
    pending_analyses: int
    failed_analyses: int


class PostRepository:
    """Key-value style store of post cache entries."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 5_000,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._clock = clock

    def init_schema(self) -> None:
        """Create tables if they do not exist."""

        SQLModel.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    async def get_post(self, post_id: str) -> PostCacheEntry | None:
        """Fetch an entry and bump its ``last_seen`` timestamp."""

        def _get() -> PostCacheEntry | None:
            with Session(self.engine) as session:
                row = session.get(PostRow, post_id)
                if row is None:
                    return None
                entry = _row_to_entry(row)
                entry.metadata.last_seen = self._clock()
                _write_entry(session, entry, row=row)
                session.commit()
                logger.debug("[%s] Retrieved post (state: %s)", post_id, entry.state.value)
                return entry

        return await self._run(f"get post {post_id}", _get)

    async def has_complete_analysis(self, post_id: str) -> bool:
        entry = await self.get_post(post_id)
        return entry is not None and entry.has_complete_analysis

    async def create_pending_entry(
        self,
        post_id: str,
        post_data: PostContent,
        platform: str,
    ) -> PostCacheEntry:
        """Store a fresh ``pending`` entry, replacing any previous one."""

        entry = PostCacheEntry.pending(
            post_id,
            post_data=post_data,
            platform=platform,
            now=self._clock(),
        )

        def _create() -> PostCacheEntry:
            with Session(self.engine) as session:
                _write_entry(session, entry, row=session.get(PostRow, post_id))
                session.commit()
            logger.info("[%s] Created pending entry", post_id)
            return entry

        return await self._run(f"create post {post_id}", _create)

    async def update_post(self, post_id: str, updates: dict[str, Any]) -> None:
        """Shallow-merge ``updates``; metadata, artifacts and debug merge one level deep."""

        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown post fields: {sorted(unknown)}")

        def _update() -> None:
            with Session(self.engine) as session:
                row = session.get(PostRow, post_id)
                if row is None:
                    logger.warning("[%s] Cannot update non-existent post", post_id)
                    return
                entry = _apply_updates(_row_to_entry(row), updates)
                _write_entry(session, entry, row=row)
                session.commit()
            logger.debug("[%s] Updated post fields: %s", post_id, sorted(updates))

        await self._run(f"update post {post_id}", _update)

    async def update_time_spent(self, post_id: str, delta_ms: float) -> None:
        """Add ``delta_ms`` to the post's time spent, creating a minimal entry if absent."""

        def _add() -> None:
            now = self._clock()
            with Session(self.engine) as session:
                row = session.get(PostRow, post_id)
                if row is None:
                    logger.info("[%s] Creating minimal entry for time tracking", post_id)
                    entry = PostCacheEntry.pending(
                        post_id,
                        post_data=PostContent(),
                        platform="unknown",
                        now=now,
                    )
                else:
                    entry = _row_to_entry(row)
                entry.metadata.time_spent += delta_ms
                entry.metadata.last_seen = now
                _write_entry(session, entry, row=row)
                session.commit()
            logger.debug(
                "[%s] Updated time spent: +%.0fms (total: %.0fms)",
                post_id,
                delta_ms,
                entry.metadata.time_spent,
            )

        await self._run(f"update time spent for {post_id}", _add)

    async def update_task_data(
        self,
        post_id: str,
        tasks: list[Task],
        accumulated_text: str,
        last_classification_text: str,
    ) -> None:
        await self.update_post(
            post_id,
            {
                "tasks": tasks,
                "accumulated_text": accumulated_text,
                "last_classification_text": last_classification_text,
            },
        )

    async def mark_complete(self, post_id: str, classification: ClassificationResult) -> None:
        await self.update_post(
            post_id,
            {"classification": classification, "state": PostState.COMPLETE},
        )

    async def mark_failed(self, post_id: str, error: str | None = None) -> None:
        updates: dict[str, Any] = {"state": PostState.FAILED}
        if error:
            updates["debug"] = {"last_error": error, "failed_at": self._clock()}
        await self.update_post(post_id, updates)

    async def is_screen_enabled_for_today(self, post_id: str) -> bool:
        """Screen flag for the post; statuses set on an earlier day count as off."""

        try:
            entry = await self.get_post(post_id)
        except StoreError:
            logger.warning("[%s] Failed to check screen status", post_id, exc_info=True)
            return False
        if entry is None or entry.metadata.screen_status is None:
            return False
        status = entry.metadata.screen_status
        if local_date(status.last_updated) != local_date(self._clock()):
            return False
        return status.enabled

    async def update_screen_status(self, post_id: str, *, enabled: bool) -> None:
        await self.update_post(
            post_id,
            {
                "metadata": {
                    "screen_status": ScreenStatus(enabled=enabled, last_updated=self._clock()),
                },
            },
        )
        logger.info("[%s] Updated screen status: %s", post_id, "ON" if enabled else "OFF")

    async def get_all_posts(self) -> list[PostCacheEntry]:
        def _all() -> list[PostCacheEntry]:
            with Session(self.engine) as session:
                rows = session.exec(select(PostRow).order_by(col(PostRow.last_seen_ms).desc()))
                return [_row_to_entry(row) for row in rows]

        return await self._run("list posts", _all)

    async def storage_stats(self) -> StorageStats:
        posts = await self.get_all_posts()
        return StorageStats(
            total_posts=len(posts),
            complete_analyses=sum(1 for post in posts if post.state == PostState.COMPLETE),
            pending_analyses=sum(
                1 for post in posts if post.state in {PostState.PENDING, PostState.ANALYZING}
            ),
            failed_analyses=sum(1 for post in posts if post.state == PostState.FAILED),
        )

    async def today_analytics(self) -> DailyUsage:
        """Attention-seconds consumed today over posts last seen today."""

        today = local_date(self._clock())
        posts = await self.get_all_posts()
        return aggregate_daily_usage(
            (post.classification, post.time_spent_seconds)
            for post in posts
            if post.classification is not None and local_date(post.metadata.last_seen) == today
        )

    async def clear_all(self) -> None:
        def _clear() -> None:
            with Session(self.engine) as session:
                session.execute(sa_delete(PostRow))
                session.commit()
            logger.info("Cleared all posts")

        await self._run("clear posts", _clear)

    async def _run(self, operation: str, func: Callable[[], _T]) -> _T:
        try:
            return await asyncio.to_thread(func)
        except SQLAlchemyError as error:
            logger.error("Store operation failed (%s): %s", operation, error)
            raise StoreError(f"Failed to {operation}: {error}") from error


def _apply_updates(entry: PostCacheEntry, updates: dict[str, Any]) -> PostCacheEntry:
    for name, value in updates.items():
        if name == "metadata":
            patch = value.to_dict() if isinstance(value, PostMetadata) else value
            entry.metadata = PostMetadata.from_dict({**entry.metadata.to_dict(), **patch})
        elif name in _DEEP_MERGE_FIELDS:
            setattr(entry, name, {**getattr(entry, name), **value})
        elif name == "state":
            entry.state = PostState(value)
        elif name == "tasks":
            entry.tasks = [
                task if isinstance(task, Task) else Task.from_snapshot(task) for task in value
            ]
        else:
            setattr(entry, name, value)
    return entry


def _row_to_entry(row: PostRow) -> PostCacheEntry:
    classification = (
        None
        if row.classification_json is None
        else ClassificationResult.from_payload(json.loads(row.classification_json))
    )
    return PostCacheEntry(
        id=row.post_id,
        post_data=PostContent.from_dict(json.loads(row.post_data_json)),
        metadata=PostMetadata.from_dict(json.loads(row.metadata_json)),
        classification=classification,
        state=PostState(row.state),
        tasks=[Task.from_snapshot(item) for item in json.loads(row.tasks_json)],
        accumulated_text=row.accumulated_text,
        last_classification_text=row.last_classification_text,
        artifacts=json.loads(row.artifacts_json),
        debug=json.loads(row.debug_json),
    )


def _write_entry(session: Session, entry: PostCacheEntry, *, row: PostRow | None) -> None:
    values = {
        "platform": entry.metadata.platform,
        "state": entry.state.value,
        "post_data_json": _dumps(entry.post_data.to_dict()),
        "classification_json": (
            None if entry.classification is None else _dumps(entry.classification.to_payload())
        ),
        "tasks_json": _dumps([task.to_snapshot() for task in entry.tasks]),
        "accumulated_text": entry.accumulated_text,
        "last_classification_text": entry.last_classification_text,
        "metadata_json": _dumps(entry.metadata.to_dict()),
        "artifacts_json": _dumps(entry.artifacts),
        "debug_json": _dumps(entry.debug),
        "last_seen_ms": entry.metadata.last_seen,
        "updated_at": utc_now(),
    }
    if row is None:
        session.add(PostRow(post_id=entry.id, **values))
        return
    for name, value in values.items():
        setattr(row, name, value)
    session.add(row)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)
