from __future__ import annotations

import asyncio
import json

import allure

from attention_budget.budgets import StaticBudgetProvider
from attention_budget.extractors import (
    ImageDescriptionExtractor,
    ImageTextExtractor,
    OcrExtractor,
    RemoteAnalysisRunner,
    describe_images,
    extract_post_text,
)
from attention_budget.orchestrator.models import MediaElement, MediaKind, Post, PostContent
from attention_budget.orchestrator.remote import (
    AnalysisPayload,
    RemoteAnalysisResponse,
    RemotePollPolicy,
    RemoteStatus,
)

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Text Extractors"),
]


class StaticStatus:
    def __init__(self, complete: bool) -> None:
        self.complete = complete
        self.checked: list[str] = []

    async def has_complete_analysis(self, post_id: str) -> bool:
        self.checked.append(post_id)
        return self.complete


class Captioner:
    def __init__(self, captions: dict[str, str]) -> None:
        self.captions = captions

    async def describe(self, image: MediaElement, post_id: str) -> str:
        if image.src not in self.captions:
            raise RuntimeError("model not loaded")
        return self.captions[image.src]


class Reader:
    async def read_text(self, image: MediaElement, post_id: str) -> str:
        return f"text on {image.src}"


async def _no_sleep(seconds: float) -> None:
    return None


def _post(*srcs: str, text: str = "hello world") -> Post:
    return Post(
        id="twitter-ada-1",
        platform="twitter",
        content=PostContent(
            text=text,
            author_name="Ada",
            media=[MediaElement(kind=MediaKind.IMAGE, src=src) for src in srcs]
            + [MediaElement(kind=MediaKind.VIDEO, src="clip.mp4")],
        ),
    )


def test_post_text_extractor_returns_text() -> None:
    assert asyncio.run(extract_post_text(_post())) == "hello world"


def test_describe_images_substitutes_placeholder_for_failing_image() -> None:
    captioner = Captioner({"a.png": "a cat"})
    images = [MediaElement(kind=MediaKind.IMAGE, src=src) for src in ("a.png", "b.png")]

    text = asyncio.run(describe_images(captioner.describe, images, "post-1"))

    assert text == "a cat [Image analysis failed: model not loaded]"


def test_image_extractor_skips_when_analysis_already_complete() -> None:
    status = StaticStatus(complete=True)
    extractor = ImageDescriptionExtractor(
        Captioner({"a.png": "a cat"}),
        status_source=status,
        delay_seconds=5.0,
        sleep=_no_sleep,
    )

    assert asyncio.run(extractor(_post("a.png"))) == ""
    assert status.checked == ["twitter-ada-1"]


def test_image_extractor_captions_only_images() -> None:
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    extractor = ImageDescriptionExtractor(
        Captioner({"a.png": "a cat", "b.png": "a dog"}),
        status_source=StaticStatus(complete=False),
        delay_seconds=5.0,
        sleep=sleep,
    )

    assert asyncio.run(extractor(_post("a.png", "b.png"))) == "a cat a dog"
    assert delays == [5.0]


def test_image_extractor_returns_empty_without_images() -> None:
    extractor = ImageDescriptionExtractor(
        Captioner({}),
        status_source=StaticStatus(complete=False),
        delay_seconds=0,
    )
    assert asyncio.run(extractor(_post())) == ""


def test_ocr_extractor_reads_every_image() -> None:
    extractor = OcrExtractor(
        Reader(),
        status_source=StaticStatus(complete=False),
        delay_seconds=0,
    )
    assert asyncio.run(extractor(_post("a.png"))) == "text on a.png"


def test_image_text_extractor_runs_any_per_image_callable() -> None:
    async def read_alt(image: MediaElement, post_id: str) -> str:
        if image.src == "b.png":
            raise RuntimeError("no alt text")
        return f"alt for {image.src}"

    extractor = ImageTextExtractor(
        read_alt,
        status_source=StaticStatus(complete=False),
        label="alt text",
        failure_label="Alt text failed",
        delay_seconds=0,
    )

    text = asyncio.run(extractor(_post("a.png", "b.png")))

    assert text == "alt for a.png [Alt text failed: no alt text]"
    assert extractor.label == "alt text"


def test_remote_runner_returns_classification_json() -> None:
    class Transport:
        async def request(self, payload: AnalysisPayload) -> RemoteAnalysisResponse:
            assert payload.text == "Ada: hello world"
            return RemoteAnalysisResponse(
                status=RemoteStatus.COMPLETED,
                classification={
                    "Emotion": {"subcategories": {"Anxiety and fear": {"score": 0.6}}},
                },
            )

    runner = RemoteAnalysisRunner(
        Transport(),
        StaticBudgetProvider(),
        policy=RemotePollPolicy(max_attempts=1),
        sleep=_no_sleep,
    )

    payload = json.loads(asyncio.run(runner(_post())))

    assert payload["Emotion"]["subcategories"]["Anxiety and fear"]["score"] == 0.6
    assert payload["totalAttentionScore"] == 0.6
