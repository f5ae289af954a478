"""Budget screen control: the UI collaborator that hides a post."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ScreenController(Protocol):
    async def show_screen(self, post_id: str) -> None:
        """Cover the post with the budget screen."""

    async def hide_screen(self, post_id: str) -> None:
        """Remove the budget screen from the post."""


class LoggingScreenController:
    """Headless controller that logs and remembers which posts are screened."""

    def __init__(self) -> None:
        self.screened: set[str] = set()

    async def show_screen(self, post_id: str) -> None:
        logger.info("[%s] Showing budget screen", post_id)
        self.screened.add(post_id)

    async def hide_screen(self, post_id: str) -> None:
        logger.info("[%s] Hiding budget screen", post_id)
        self.screened.discard(post_id)
