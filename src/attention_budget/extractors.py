"""Task runners: text extractors and the authoritative analysis runner.

Each runner is an async callable taking a ``Post`` and returning the task's
result string. Image and OCR adapters are external collaborators wrapped so
that one failing image contributes a placeholder instead of failing the task.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from attention_budget.budgets import BudgetProvider
from attention_budget.orchestrator.models import MediaElement, Post
from attention_budget.orchestrator.remote import (
    AnalysisPayload,
    RemoteAnalysisTransport,
    RemotePollPolicy,
    Sleep,
    poll_remote_analysis,
)

logger = logging.getLogger(__name__)

TaskRunner = Callable[[Post], Awaitable[str]]


class ImageCaptioner(Protocol):
    async def describe(self, image: MediaElement, post_id: str) -> str:
        """Return a caption for one image."""


class OcrReader(Protocol):
    async def read_text(self, image: MediaElement, post_id: str) -> str:
        """Return text recognized in one image."""


class AnalysisStatusSource(Protocol):
    async def has_complete_analysis(self, post_id: str) -> bool:
        """True once the post holds a complete classification."""


async def describe_images(
    describe: Callable[[MediaElement, str], Awaitable[str]],
    images: list[MediaElement],
    post_id: str,
    *,
    failure_label: str = "Image analysis failed",
) -> str:
    """Run the per-image adapter over every image, substituting a placeholder on failure."""

    parts: list[str] = []
    for index, image in enumerate(images):
        try:
            text = await describe(image, post_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] %s for image %d: %s", post_id, failure_label, index, exc)
            text = f"[{failure_label}: {exc}]"
        if text.strip():
            parts.append(text.strip())
    return " ".join(parts)


async def extract_post_text(post: Post) -> str:
    return post.content.text or ""


class ImageTextExtractor:
    """Waits, then runs a per-image adapter unless the post was already fully analyzed."""

    def __init__(
        self,
        extract_one: Callable[[MediaElement, str], Awaitable[str]],
        *,
        status_source: AnalysisStatusSource,
        label: str = "image text extraction",
        failure_label: str = "Image analysis failed",
        delay_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._extract_one = extract_one
        self._status_source = status_source
        self.label = label
        self._failure_label = failure_label
        self._delay_seconds = delay_seconds
        self._sleep = sleep

    async def __call__(self, post: Post) -> str:
        if self._delay_seconds > 0:
            await self._sleep(self._delay_seconds)
        if await self._status_source.has_complete_analysis(post.id):
            logger.info(
                "[%s] Post classification already complete, skipping %s",
                post.id,
                self.label,
            )
            return ""
        images = post.content.images()
        if not images:
            logger.info("[%s] No images found in post", post.id)
            return ""
        logger.info("[%s] Found %d images, starting %s", post.id, len(images), self.label)
        return await describe_images(
            self._extract_one,
            images,
            post.id,
            failure_label=self._failure_label,
        )


class ImageDescriptionExtractor(ImageTextExtractor):
    def __init__(
        self,
        captioner: ImageCaptioner,
        *,
        status_source: AnalysisStatusSource,
        delay_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(
            captioner.describe,
            status_source=status_source,
            label="image description",
            delay_seconds=delay_seconds,
            sleep=sleep,
        )


class OcrExtractor(ImageTextExtractor):
    def __init__(
        self,
        reader: OcrReader,
        *,
        status_source: AnalysisStatusSource,
        delay_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(
            reader.read_text,
            status_source=status_source,
            label="OCR",
            failure_label="OCR failed",
            delay_seconds=delay_seconds,
            sleep=sleep,
        )


class RemoteAnalysisRunner:
    """Runs the poll loop and returns the classification as JSON text."""

    def __init__(
        self,
        transport: RemoteAnalysisTransport,
        budgets: BudgetProvider,
        *,
        policy: RemotePollPolicy | None = None,
        payload_max_chars: int = 1_000,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._budgets = budgets
        self._policy = policy or RemotePollPolicy()
        self._payload_max_chars = payload_max_chars
        self._sleep = sleep

    async def __call__(self, post: Post) -> str:
        logger.info("[%s] Starting remote analysis task", post.id)
        payload = AnalysisPayload.from_content(post.content, max_chars=self._payload_max_chars)
        classification = await poll_remote_analysis(
            self._transport,
            payload,
            taxonomy=await self._budgets.get_taxonomy(),
            policy=self._policy,
            post_id=post.id,
            sleep=self._sleep,
        )
        logger.info("[%s] Remote analysis completed", post.id)
        return json.dumps(classification.to_payload(), sort_keys=True)
