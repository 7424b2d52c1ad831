from __future__ import annotations

import asyncio
from typing import Any

from fakes import FakeDiffRepository, InMemoryBlobStore, InMemoryWorkflowRepository, SleepRecorder, StubDiffer
from rivalwatch.diff_service import DiffService
from rivalwatch.errors import CaptureServiceError
from rivalwatch.paths import locate
from rivalwatch.schemas.capture import CaptureMetadata, CaptureOptions, CapturePaths, CaptureResult
from rivalwatch.schemas.diff import DiffAnalysis
from rivalwatch.workflows.diff import ScreenshotDiffWorkflow
from rivalwatch.workflows.engine import WorkflowEngine

URL = "https://rival.example/pricing"


class FakeCapture:
    def __init__(self, blobs: InMemoryBlobStore, text: str, *, fail_times: int = 0, empty: bool = False) -> None:
        self.blobs = blobs
        self.text = text
        self.fail_times = fail_times
        self.empty = empty
        self.calls: list[tuple[CaptureOptions, str | None]] = []

    async def take_screenshot(self, options: CaptureOptions, week_number: str | None = None) -> CaptureResult:
        self.calls.append((options, week_number))
        if len(self.calls) <= self.fail_times:
            raise CaptureServiceError("Screenshot failed: 503")
        if self.empty:
            return CaptureResult(paths=CapturePaths(), metadata=CaptureMetadata(), size=0, content_type="image/png", week_number=week_number)
        ref = locate(options.url, week_number, options.run_id)
        await self.blobs.put(ref.screenshot_path, b"png", {"contentType": "image/png"})
        await self.blobs.put(ref.content_path, self.text, {"contentType": "text/plain"})
        return CaptureResult(
            paths=CapturePaths(screenshot=ref.screenshot_path, content=ref.content_path),
            metadata=CaptureMetadata(image_width=1280, image_height=4000, page_title="Pricing"),
            size=3,
            content_type="image/png",
            week_number=week_number,
        )


def _setup(capture_kwargs: dict[str, Any] | None = None, analysis: DiffAnalysis | None = None):
    blobs = InMemoryBlobStore()
    diffs = FakeDiffRepository()
    capture = FakeCapture(blobs, "Price: $12", **(capture_kwargs or {}))
    workflow = ScreenshotDiffWorkflow(capture, DiffService(blobs, diffs, StubDiffer(analysis)))
    repo = InMemoryWorkflowRepository()
    engine = WorkflowEngine(repo, {"diff": workflow}, sleep=SleepRecorder())
    return engine, repo, blobs, diffs, capture


def _run(engine: WorkflowEngine, params: dict[str, Any]):
    async def scenario():
        record = await engine.create("diff", params)
        return record.id, await engine.execute(record.id)

    return asyncio.run(scenario())


def test_run_1_captures_and_diffs_against_previous_week_run_7() -> None:
    engine, _repo, blobs, diffs, capture = _setup(analysis=DiffAnalysis(pricing=["Price increased from $10 to $12"]))
    asyncio.run(blobs.put(locate(URL, "09", "7").content_path, "Price: $10"))

    _, status = _run(engine, {"url": URL, "runId": "1", "weekNumber": "10"})

    assert status.state == "complete"
    output = status.output
    assert output["status"] == "success"
    assert output["currentVersion"]["weekNumber"] == "10"
    assert output["currentVersion"]["paths"]["screenshot"] == locate(URL, "10", "1").screenshot_path
    assert output["comparisonVersion"] == {"weekNumber": "09", "runId": "7"}
    assert output["diff"]["differences"]["pricing"] == ["Price increased from $10 to $12"]
    assert capture.calls[0][0].metadata_content is True
    assert len(diffs.rows) == 1
    assert diffs.rows[0].week_number == "10"


def test_missing_comparison_content_is_terminal() -> None:
    engine, repo, _blobs, diffs, _capture = _setup()

    instance_id, status = _run(engine, {"url": URL, "runId": "7", "weekNumber": "10"})

    assert status.state == "errored"
    assert status.error == "First content version not found"
    assert repo.instances[instance_id].retryable is False
    assert diffs.rows == []
    # The capture step still completed and is memoized.
    assert (instance_id, "take-screenshot") in repo.ledger


def test_transient_capture_failures_are_retried() -> None:
    engine, _repo, blobs, _diffs, capture = _setup(capture_kwargs={"fail_times": 2})
    asyncio.run(blobs.put(locate(URL, "10", "1").content_path, "Price: $10"))

    _, status = _run(engine, {"url": URL, "runId": "7", "weekNumber": "10"})

    assert status.state == "complete"
    assert len(capture.calls) == 3


def test_capture_without_paths_fails_fast() -> None:
    engine, repo, _blobs, _diffs, capture = _setup(capture_kwargs={"empty": True})

    instance_id, status = _run(engine, {"url": URL, "runId": "1", "weekNumber": "10"})

    assert status.state == "errored"
    assert "No paths returned" in status.error
    assert repo.instances[instance_id].retryable is False
    assert len(capture.calls) == 1


def test_week_is_pinned_when_the_instance_is_created() -> None:
    engine, repo, _blobs, _diffs, _capture = _setup()

    record = asyncio.run(engine.create("diff", {"url": URL, "runId": "1"}))

    assert len(repo.instances[record.id].params["weekNumber"]) == 2
