from __future__ import annotations

import asyncio
import json
import logging

import allure
import httpx
import pytest

from attention_budget.budgets import DEFAULT_TAXONOMY
from attention_budget.errors import RemoteAnalysisError, RemoteAnalysisTimeout
from attention_budget.orchestrator.models import MediaElement, MediaKind, PostContent
from attention_budget.orchestrator.remote import (
    AnalysisPayload,
    RemoteAnalysisClient,
    RemoteAnalysisResponse,
    RemotePollPolicy,
    RemoteStatus,
    poll_remote_analysis,
)

pytestmark = [
    allure.epic("Remote Analysis"),
    allure.feature("Poll & Retry"),
]

_CLASSIFICATION = {
    "Education": {
        "subcategories": {"Learning and education": {"score": 0.8}},
        "totalScore": 0.8,
    },
    "totalAttentionScore": 0.8,
}


class ScriptedTransport:
    """Replays a fixed sequence of responses or errors."""

    def __init__(self, *steps: RemoteAnalysisResponse | Exception) -> None:
        self._steps = list(steps)
        self.calls = 0

    async def request(self, payload: AnalysisPayload) -> RemoteAnalysisResponse:
        self.calls += 1
        step = self._steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _poll(transport, *, policy: RemotePollPolicy | None = None, sleep=None):
    return asyncio.run(
        poll_remote_analysis(
            transport,
            AnalysisPayload(text="author: text"),
            taxonomy=DEFAULT_TAXONOMY,
            policy=policy or RemotePollPolicy(),
            post_id="post-1",
            sleep=sleep or RecordingSleep(),
        ),
    )


def test_payload_prefixes_author_and_truncates() -> None:
    content = PostContent(
        text="x" * 2000,
        author_name="Ada",
        media=[MediaElement(kind=MediaKind.IMAGE, src="https://img/1.png")],
    )

    payload = AnalysisPayload.from_content(content, max_chars=1000)

    assert payload.text.startswith("Ada: x")
    assert len(payload.text) == 1000
    assert json.loads(payload.to_query_value())["media_elements"] == ["https://img/1.png"]


def test_response_parsing_accepts_result_alias() -> None:
    response = RemoteAnalysisResponse.from_json({"status": "completed", "result": _CLASSIFICATION})
    assert response.status == RemoteStatus.COMPLETED
    assert response.classification == _CLASSIFICATION


def test_response_parsing_rejects_unknown_status() -> None:
    with pytest.raises(RemoteAnalysisError, match="Unknown status"):
        RemoteAnalysisResponse.from_json({"status": "queued"})


def test_client_sends_content_query_parameter() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "processing", "retry_after": 3})

    async def _run() -> RemoteAnalysisResponse:
        async with RemoteAnalysisClient(
            base_url="https://api.example.com",
            transport=httpx.MockTransport(handler),
        ) as client:
            return await client.request(AnalysisPayload(text="Ada: hello", media_elements=[]))

    response = asyncio.run(_run())

    assert response.status == RemoteStatus.PROCESSING
    assert response.retry_after_seconds == 3.0
    assert seen[0].url.path == "/api/analyze"
    assert json.loads(seen[0].url.params["content"]) == {
        "text": "Ada: hello",
        "media_elements": [],
    }


def test_client_raises_with_status_code_on_http_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))

    async def _run() -> None:
        async with RemoteAnalysisClient(
            base_url="https://api.example.com",
            transport=transport,
        ) as client:
            await client.request(AnalysisPayload(text="t"))

    with pytest.raises(RemoteAnalysisError) as error:
        asyncio.run(_run())
    assert error.value.status_code == 503


def test_client_rejects_non_json_body() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))

    async def _run() -> None:
        async with RemoteAnalysisClient(
            base_url="https://api.example.com",
            transport=transport,
        ) as client:
            await client.request(AnalysisPayload(text="t"))

    with pytest.raises(RemoteAnalysisError, match="invalid json"):
        asyncio.run(_run())


def test_poll_honours_server_retry_after_with_ceiling() -> None:
    transport = ScriptedTransport(
        RemoteAnalysisResponse(status=RemoteStatus.PROCESSING, retry_after_seconds=2),
        RemoteAnalysisResponse(status=RemoteStatus.PROCESSING, retry_after_seconds=600),
        RemoteAnalysisResponse(status=RemoteStatus.PROCESSING),
        RemoteAnalysisResponse(status=RemoteStatus.COMPLETED, classification=_CLASSIFICATION),
    )
    sleep = RecordingSleep()

    result = _poll(transport, sleep=sleep, policy=RemotePollPolicy(max_total_wait_seconds=10_000))

    assert result.categories["Education"].subcategories["Learning and education"] == 0.8
    assert sleep.delays == [2.0, 60.0, 5.0]
    assert transport.calls == 4


def test_poll_completed_without_data_returns_zero_classification() -> None:
    transport = ScriptedTransport(RemoteAnalysisResponse(status=RemoteStatus.COMPLETED))

    result = _poll(transport)

    assert set(result.categories) == set(DEFAULT_TAXONOMY)
    assert result.total_attention_score == 0.0


def test_poll_retries_transient_failures_with_backoff() -> None:
    transport = ScriptedTransport(
        RemoteAnalysisError("HTTP error! status: 502", status_code=502),
        RemoteAnalysisError("network error: connection reset"),
        RemoteAnalysisResponse(status=RemoteStatus.COMPLETED, classification=_CLASSIFICATION),
    )
    sleep = RecordingSleep()

    _poll(transport, sleep=sleep)

    assert sleep.delays == [5.0, 10.0]


def test_poll_fails_fast_on_non_retryable_status(caplog: pytest.LogCaptureFixture) -> None:
    transport = ScriptedTransport(RemoteAnalysisError("HTTP error! status: 400", status_code=400))

    with caplog.at_level(logging.ERROR, logger="attention_budget.orchestrator.remote"):
        with pytest.raises(RemoteAnalysisError, match="400"):
            _poll(transport)
    assert transport.calls == 1
    assert "'reason_code': 'remote_http_400'" in caplog.text
    assert "'classifier_version': 1" in caplog.text


def test_poll_raises_on_remote_error_status(caplog: pytest.LogCaptureFixture) -> None:
    transport = ScriptedTransport(
        RemoteAnalysisResponse(status=RemoteStatus.ERROR, message="model crashed"),
    )

    with caplog.at_level(logging.ERROR, logger="attention_budget.orchestrator.remote"):
        with pytest.raises(RemoteAnalysisError, match="model crashed"):
            _poll(transport)
    assert "'reason_code': 'remote_reported_error'" in caplog.text


def test_poll_raises_on_invalid_classification() -> None:
    transport = ScriptedTransport(
        RemoteAnalysisResponse(status=RemoteStatus.COMPLETED, classification={"Education": 3}),
    )

    with pytest.raises(RemoteAnalysisError, match="invalid classification"):
        _poll(transport)


def test_poll_gives_up_after_max_attempts() -> None:
    transport = ScriptedTransport(
        *[RemoteAnalysisResponse(status=RemoteStatus.PROCESSING, retry_after_seconds=1)] * 3,
    )
    sleep = RecordingSleep()

    with pytest.raises(RemoteAnalysisTimeout, match="3 attempts"):
        _poll(transport, sleep=sleep, policy=RemotePollPolicy(max_attempts=3))
    assert transport.calls == 3
    assert sleep.delays == [1.0, 1.0]


def test_poll_gives_up_when_wait_budget_would_be_exceeded() -> None:
    transport = ScriptedTransport(
        RemoteAnalysisResponse(status=RemoteStatus.PROCESSING, retry_after_seconds=30),
    )

    with pytest.raises(RemoteAnalysisTimeout, match="wait budget"):
        _poll(transport, policy=RemotePollPolicy(max_total_wait_seconds=10))
