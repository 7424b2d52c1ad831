"""Snapshot-then-diff workflow: capture a URL, then diff it against its comparison run."""
from __future__ import annotations

import logging
from typing import Any

from rivalwatch.capture import CaptureService
from rivalwatch.comparison import resolve
from rivalwatch.diff_service import DiffService
from rivalwatch.errors import CaptureFailedError, NoDifferencesError
from rivalwatch.paths import current_week_number
from rivalwatch.schemas.capture import CaptureOptions
from rivalwatch.schemas.diff import DiffRequest
from rivalwatch.schemas.workflow import DiffWorkflowParams
from rivalwatch.workflows.engine import StepPolicy, WorkflowStep

logger = logging.getLogger(__name__)

CAPTURE_POLICY = StepPolicy(retries=2, delay_s=3, timeout_s=120)
DIFF_POLICY = StepPolicy(retries=2, delay_s=3, timeout_s=300)


class ScreenshotDiffWorkflow:
    name = "diff"

    def __init__(self, capture: CaptureService, diff_service: DiffService) -> None:
        self.capture = capture
        self.diff_service = diff_service

    def normalize(self, params: dict[str, Any]) -> dict[str, Any]:
        # Pin the week at creation so a resumed instance diffs the same runs.
        parsed = DiffWorkflowParams.model_validate(params)
        if parsed.week_number is None:
            parsed.week_number = current_week_number()
        return parsed.model_dump(by_alias=True)

    async def run(self, params: dict[str, Any], step: WorkflowStep) -> dict[str, Any]:
        p = DiffWorkflowParams.model_validate(params)
        week = p.week_number or current_week_number()
        comparison = resolve(week, p.run_id)
        logger.info(
            "Diff workflow for %s: run %s/%s vs %s/%s",
            p.url,
            week,
            p.run_id,
            comparison.comparison_week,
            comparison.comparison_run_id,
        )

        async def take_screenshot() -> dict[str, Any]:
            result = await self.capture.take_screenshot(
                CaptureOptions(url=p.url, run_id=p.run_id, metadata_content=True),
                week,
            )
            if not result.paths.screenshot:
                raise CaptureFailedError("Screenshot failed: No paths returned")
            logger.info("Screenshot stored for %s at %s", p.url, result.paths.screenshot)
            return result.model_dump(mode="json", by_alias=True)

        capture = await step.do("take-screenshot", CAPTURE_POLICY, take_screenshot)

        async def create_diff() -> dict[str, Any]:
            # ContentNotFoundError and refusals propagate as terminal.
            result = await self.diff_service.create_diff(
                DiffRequest(
                    url=p.url,
                    run_id1=comparison.comparison_run_id,
                    run_id2=p.run_id,
                    week_number1=comparison.comparison_week,
                    week_number2=week,
                )
            )
            if result.differences is None:
                raise NoDifferencesError("No differences detected between versions")
            return result.model_dump(mode="json", by_alias=True)

        diff = await step.do("create-diff", DIFF_POLICY, create_diff)

        return {
            "status": "success",
            "message": "Screenshot taken and diff analysis completed successfully",
            "currentVersion": {
                "weekNumber": week,
                "runId": p.run_id,
                "paths": capture["paths"],
            },
            "comparisonVersion": {
                "weekNumber": comparison.comparison_week,
                "runId": comparison.comparison_run_id,
            },
            "diff": diff,
        }
