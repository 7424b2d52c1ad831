"""Workflow API: start instances, poll their status, trigger batch fan-out."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from rivalwatch.api.deps import get_batch_scheduler, get_services
from rivalwatch.schemas.workflow import (
    DiffWorkflowParams,
    ReportWorkflowParams,
    WorkflowStatusResponse,
)
from rivalwatch.services import Services
from rivalwatch.workers.batch import BATCH_KINDS, BatchScheduler

router = APIRouter(prefix="/api/v1", tags=["workflows"])
logger = logging.getLogger(__name__)


async def _start(services: Services, workflow_type: str, params: dict[str, Any]) -> dict[str, Any]:
    record = await services.engine.create(workflow_type, params)
    return {
        "workflowId": record.id,
        "status": record.status().model_dump(mode="json", by_alias=True),
    }


@router.post("/workflows/diff")
async def start_diff_workflow(
    payload: DiffWorkflowParams,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await _start(services, "diff", payload.model_dump(by_alias=True))


@router.post("/workflows/report")
async def start_report_workflow(
    payload: ReportWorkflowParams,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await _start(services, "report", payload.model_dump(by_alias=True))


@router.get("/workflows/{workflow_type}/{workflow_id}")
async def workflow_status(
    workflow_type: str,
    workflow_id: str,
    services: Services = Depends(get_services),
) -> WorkflowStatusResponse:
    if workflow_type not in services.engine.workflows:
        raise HTTPException(status_code=404, detail=f"Unknown workflow type: {workflow_type}")
    status = await services.engine.status(workflow_id, workflow_type)
    return WorkflowStatusResponse(workflow_id=workflow_id, type=workflow_type, status=status)


@router.post("/batch/{kind}")
async def trigger_batch(
    kind: str,
    page_size: int | None = Query(default=None, alias="pageSize", ge=1, le=1000),
    offset_start: int = Query(default=0, alias="offsetStart", ge=0),
    run_id: str | None = Query(default=None, alias="runId", pattern="^(1|7)$"),
    week_number: str | None = Query(default=None, alias="weekNumber"),
    scheduler: BatchScheduler = Depends(get_batch_scheduler),
) -> dict[str, Any]:
    if kind not in BATCH_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown batch kind: {kind}")
    result = await scheduler.trigger(
        kind,
        page_size=page_size,
        offset_start=offset_start,
        run_id=run_id,
        week_number=week_number,
    )
    return {"status": "success", **result.to_dict()}
