"""Authoritative remote analysis: HTTP client and poll-and-retry loop.

The service answers one request with either a finished classification, a
``processing`` directive carrying ``retry_after`` seconds, or an error. The
poll loop repeats the same request until it completes, honouring the
server-directed delay, and gives up once the attempt or wall-clock budget of
``RemotePollPolicy`` is spent.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx

from attention_budget.classification.models import ClassificationResult, Taxonomy
from attention_budget.errors import (
    ClassificationPayloadError,
    RemoteAnalysisError,
    RemoteAnalysisTimeout,
)
from attention_budget.orchestrator.failure_classifier import classify_remote_failure
from attention_budget.orchestrator.models import PostContent

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "AttentionBudget/0.1 (+https://github.com/attention-budget)"

Sleep = Callable[[float], Awaitable[None]]


class RemoteStatus(str, Enum):
    COMPLETED = "completed"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass(slots=True)
class RemoteAnalysisResponse:
    """One parsed answer from the analysis service."""

    status: RemoteStatus
    classification: dict[str, Any] | None = None
    retry_after_seconds: float | None = None
    message: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> RemoteAnalysisResponse:
        if not isinstance(data, dict):
            raise RemoteAnalysisError("Invalid JSON body from remote server")
        raw_status = data.get("status")
        try:
            status = RemoteStatus(raw_status)
        except ValueError as error:
            raise RemoteAnalysisError(
                f"Unknown status from remote server: {raw_status!r}",
            ) from error

        classification = data.get("classification") or data.get("result") or None
        raw_retry = data.get("retry_after")
        return cls(
            status=status,
            classification=classification if isinstance(classification, dict) else None,
            retry_after_seconds=float(raw_retry) if raw_retry is not None else None,
            message=data.get("message"),
        )


@dataclass(slots=True)
class AnalysisPayload:
    """Content sent to the analysis service."""

    text: str
    media_elements: list[str] = field(default_factory=list)

    @classmethod
    def from_content(cls, content: PostContent, *, max_chars: int = 1_000) -> AnalysisPayload:
        text = f"{content.author_name}: {content.text}"[:max_chars]
        return cls(
            text=text,
            media_elements=[item.src for item in content.media if item.src],
        )

    def to_query_value(self) -> str:
        return json.dumps(
            {"text": self.text, "media_elements": self.media_elements},
            ensure_ascii=False,
        )


class RemoteAnalysisTransport(Protocol):
    """One request/response exchange with the analysis service."""

    async def request(self, payload: AnalysisPayload) -> RemoteAnalysisResponse:
        """Send the payload once and parse the answer."""


class RemoteAnalysisClient:
    """``httpx.AsyncClient`` wrapper for the analysis endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
            follow_redirects=True,
        )

    async def request(self, payload: AnalysisPayload) -> RemoteAnalysisResponse:
        try:
            response = await self._client.get(
                "/api/analyze",
                params={"content": payload.to_query_value()},
            )
        except httpx.TimeoutException as error:
            raise RemoteAnalysisError(f"timeout: {error}") from error
        except httpx.HTTPError as error:
            raise RemoteAnalysisError(f"network error: {error}") from error

        if not response.is_success:
            raise RemoteAnalysisError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as error:
            raise RemoteAnalysisError(f"invalid json: {error}") from error
        return RemoteAnalysisResponse.from_json(data)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RemoteAnalysisClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


@dataclass(slots=True)
class RemotePollPolicy:
    """Ceiling and pacing for the poll loop."""

    max_attempts: int = 60
    max_total_wait_seconds: float = 600.0
    default_retry_seconds: float = 5.0
    max_retry_seconds: float = 60.0

    def processing_delay(self, retry_after: float | None) -> float:
        delay = self.default_retry_seconds if retry_after is None else retry_after
        return max(0.0, min(delay, self.max_retry_seconds))

    def failure_delay(self, consecutive_failures: int) -> float:
        delay = self.default_retry_seconds * (2 ** max(0, consecutive_failures - 1))
        return min(delay, self.max_retry_seconds)


async def poll_remote_analysis(
    transport: RemoteAnalysisTransport,
    payload: AnalysisPayload,
    *,
    taxonomy: Taxonomy,
    policy: RemotePollPolicy,
    post_id: str,
    sleep: Sleep = asyncio.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> ClassificationResult:
    """Repeat the analysis request until it completes or the policy budget runs out."""

    started = monotonic()
    consecutive_failures = 0
    for attempt in range(1, policy.max_attempts + 1):
        try:
            response = await transport.request(payload)
        except RemoteAnalysisError as error:
            classified = classify_remote_failure(
                status_code=error.status_code,
                message=str(error),
                timed_out=isinstance(error.__cause__, httpx.TimeoutException),
            )
            if not classified.retryable:
                logger.error(
                    "[%s] Remote analysis failed permanently on attempt %d: %s %s",
                    post_id,
                    attempt,
                    error,
                    classified.to_details(),
                )
                raise
            consecutive_failures += 1
            delay = policy.failure_delay(consecutive_failures)
            logger.warning(
                "[%s] Remote analysis attempt %d failed (%s), retrying in %.1fs",
                post_id,
                attempt,
                classified.reason_code,
                delay,
            )
        else:
            consecutive_failures = 0
            if response.status == RemoteStatus.COMPLETED:
                return _completed_classification(response, taxonomy=taxonomy, post_id=post_id)
            if response.status == RemoteStatus.ERROR:
                message = response.message or "Remote analysis failed"
                classified = classify_remote_failure(
                    status_code=None,
                    message=message,
                    remote_reported=True,
                )
                logger.error(
                    "[%s] Remote analysis reported error: %s %s",
                    post_id,
                    message,
                    classified.to_details(),
                )
                raise RemoteAnalysisError(message)
            delay = policy.processing_delay(response.retry_after_seconds)
            logger.info(
                "[%s] Waiting %.1f seconds for remote processing (attempt %d)",
                post_id,
                delay,
                attempt,
            )

        if attempt == policy.max_attempts:
            break
        if monotonic() - started + delay > policy.max_total_wait_seconds:
            raise RemoteAnalysisTimeout(
                f"Remote analysis exceeded {policy.max_total_wait_seconds:.0f}s wait budget",
            )
        await sleep(delay)

    raise RemoteAnalysisTimeout(
        f"Remote analysis did not complete after {policy.max_attempts} attempts",
    )


def _completed_classification(
    response: RemoteAnalysisResponse,
    *,
    taxonomy: Taxonomy,
    post_id: str,
) -> ClassificationResult:
    if response.classification is None:
        logger.warning(
            "[%s] Remote analysis completed but no classification data received, using default",
            post_id,
        )
        return ClassificationResult.empty(taxonomy)
    try:
        return ClassificationResult.from_payload(response.classification)
    except ClassificationPayloadError as error:
        raise RemoteAnalysisError(f"invalid classification: {error}") from error
