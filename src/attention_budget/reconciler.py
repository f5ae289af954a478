"""Classification reconciliation and budget screening.

Consumes task completions of one post, merges the local and authoritative
evidence into a single stored classification and decides whether the post
must be screened. An accepted authoritative result is never overwritten by a
local one.
"""

from __future__ import annotations

import asyncio
import logging

from attention_budget.attention.timer import AttentionTimer
from attention_budget.budgets import BudgetProvider
from attention_budget.classification import ClassificationAdapter
from attention_budget.classification.models import ClassificationResult
from attention_budget.config import ScreeningSettings
from attention_budget.errors import ClassificationError, StoreError
from attention_budget.orchestrator.models import TaskCompletion, TaskStatus
from attention_budget.orchestrator.tasks import TaskOrchestrator, all_terminal
from attention_budget.screen import ScreenController
from attention_budget.storage.models import PostState
from attention_budget.storage.repository import PostRepository

logger = logging.getLogger(__name__)


class ReconcilerState:
    """Per-post flags: which posts already accepted an authoritative result."""

    def __init__(self) -> None:
        self._authoritative_accepted: set[str] = set()

    def accept_authoritative(self, post_id: str) -> None:
        self._authoritative_accepted.add(post_id)

    def authoritative_accepted(self, post_id: str) -> bool:
        return post_id in self._authoritative_accepted

    def forget(self, post_id: str) -> None:
        self._authoritative_accepted.discard(post_id)


class ClassificationReconciler:
    def __init__(
        self,
        orchestrator: TaskOrchestrator,
        store: PostRepository,
        classifier: ClassificationAdapter,
        budgets: BudgetProvider,
        screen: ScreenController,
        timer: AttentionTimer,
        settings: ScreeningSettings | None = None,
        *,
        state: ReconcilerState | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._classifier = classifier
        self._budgets = budgets
        self._screen = screen
        self._timer = timer
        self._settings = settings or ScreeningSettings()
        self.state = state if state is not None else ReconcilerState()

    async def run(
        self,
        post_id: str,
        channel: asyncio.Queue[TaskCompletion] | None = None,
    ) -> None:
        """Handle the post's completions in arrival order until every task is terminal."""

        if channel is None:
            channel = self._orchestrator.events(post_id)
        while True:
            completion = await channel.get()
            try:
                await self.handle_completion(completion)
            finally:
                channel.task_done()
            live = self._orchestrator.get_tasks(post_id)
            if channel.empty() and all_terminal(live or completion.tasks):
                logger.debug("[%s] All tasks terminal, reconciler done", post_id)
                return

    async def handle_completion(self, completion: TaskCompletion) -> None:
        post_id = completion.post_id
        task = completion.task
        logger.info(
            "[%s] Handling completion of %s (%s)",
            post_id,
            task.id,
            task.status.value,
        )
        try:
            await self._handle(completion)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            logger.exception("[%s] Task completion handling failed", post_id)
            try:
                await self._store.mark_failed(post_id, str(error) or "Task completion error")
            except StoreError:
                logger.error("[%s] Could not mark post as failed", post_id)

    async def _handle(self, completion: TaskCompletion) -> None:
        post_id = completion.post_id
        tasks = completion.tasks
        await self._store.update_task_data(
            post_id,
            tasks,
            completion.accumulated_text,
            completion.accumulated_text,
        )

        if completion.task.is_authoritative and completion.task.status == TaskStatus.COMPLETED:
            await self._accept_authoritative(post_id, completion)
            return

        if self.state.authoritative_accepted(post_id) or (
            self._orchestrator.has_authoritative_completed(post_id, tasks)
        ):
            logger.info("[%s] Remote analysis already completed, skipping local classification", post_id)
            if self._orchestrator.all_tasks_terminal(post_id, tasks):
                await self._store.update_post(post_id, {"state": PostState.COMPLETE})
            return

        text = completion.accumulated_text.strip()
        if not text:
            logger.info("[%s] No meaningful text yet, skipping local classification", post_id)
            return
        await self._classify_locally(post_id, text, completion)

    async def _accept_authoritative(self, post_id: str, completion: TaskCompletion) -> None:
        classification = self._orchestrator.get_most_recent_authoritative_result(
            post_id,
            completion.tasks,
        )
        if classification is None:
            logger.error("[%s] Remote analysis completed but no valid classification found", post_id)
            return
        await self._store.mark_complete(post_id, classification)
        self.state.accept_authoritative(post_id)
        logger.info("[%s] Remote classification stored", post_id)
        if await self.should_screen(classification):
            await self._apply_screen(post_id, source="remote")

    async def _classify_locally(
        self,
        post_id: str,
        text: str,
        completion: TaskCompletion,
    ) -> None:
        logger.info("[%s] Performing local incremental classification", post_id)
        try:
            taxonomy = await self._budgets.get_taxonomy()
            classification = await self._classifier.classify(text, taxonomy)
        except asyncio.CancelledError:
            raise
        except (ClassificationError, StoreError) as error:
            logger.error("[%s] Local classification failed, keeping prior result: %s", post_id, error)
            return
        except Exception:
            logger.exception("[%s] Classifier crashed, keeping prior result", post_id)
            return

        await self._store.update_post(post_id, {"classification": classification})
        if not self._orchestrator.all_tasks_terminal(post_id, completion.tasks):
            logger.info("[%s] Tasks still pending, keeping state as analyzing", post_id)
            return
        logger.info("[%s] All tasks completed, marking as complete", post_id)
        await self._store.update_post(post_id, {"state": PostState.COMPLETE})
        if await self.should_screen(classification):
            await self._apply_screen(post_id, source="local")

    async def should_screen(self, classification: ClassificationResult) -> bool:
        """True if adding this post would push a category or subcategory over today's budget."""

        try:
            budgets = await self._budgets.get_budgets()
            usage = await self._store.today_analytics()
        except StoreError as error:
            logger.error("Error checking screening criteria: %s", error)
            return False

        threshold = self._settings.score_threshold
        for category_name, category in classification.categories.items():
            budget = budgets.get(category_name)
            if budget is None or category.total_score < threshold:
                continue
            consumed = usage.category_seconds(category_name)
            if consumed + category.total_score > budget.total_seconds:
                logger.info(
                    "Post would exceed %s budget: %.1fs + %.2f > %.0fs",
                    category_name,
                    consumed,
                    category.total_score,
                    budget.total_seconds,
                )
                return True
            for subcategory_name, score in category.subcategories.items():
                if budget.subcategories.get(subcategory_name, 0) <= 0 or score < threshold:
                    continue
                consumed_sub = usage.subcategory_seconds(category_name, subcategory_name)
                allowed = budget.subcategory_seconds(subcategory_name)
                if consumed_sub + score > allowed:
                    logger.info(
                        "Post would exceed %s/%s budget: %.1fs + %.2f > %.0fs",
                        category_name,
                        subcategory_name,
                        consumed_sub,
                        score,
                        allowed,
                    )
                    return True
        return False

    async def dismiss_screen(self, post_id: str) -> None:
        """User chose to see the post anyway."""

        await self._screen.hide_screen(post_id)
        self._timer.resume_from_screen(post_id)
        await self._store.update_screen_status(post_id, enabled=False)

    async def _apply_screen(self, post_id: str, *, source: str) -> None:
        await self._screen.show_screen(post_id)
        await self._timer.pause_for_screen(post_id)
        await self._store.update_screen_status(post_id, enabled=True)
        logger.info("[%s] Screen enabled based on %s classification", post_id, source)
