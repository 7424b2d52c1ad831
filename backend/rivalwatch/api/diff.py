"""Diff and report API."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from rivalwatch.api.deps import get_services
from rivalwatch.config import settings
from rivalwatch.schemas.diff import DiffHistoryQuery, DiffRequest
from rivalwatch.schemas.report import ReportRequest
from rivalwatch.services import Services

router = APIRouter(prefix="/api/v1", tags=["diff"])


@router.post("/diff/create")
async def create_diff(
    payload: DiffRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.diff_service.create_diff(payload)
    return {"status": "success", **result.model_dump(mode="json", by_alias=True)}


@router.get("/diff/history")
async def diff_history(
    url: str,
    from_run_id: str | None = Query(default=None, alias="fromRunId"),
    to_run_id: str | None = Query(default=None, alias="toRunId"),
    week_number: str | None = Query(default=None, alias="weekNumber"),
    limit: int = Query(default=settings.DIFF_HISTORY_DEFAULT_LIMIT, ge=1, le=100),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    query = DiffHistoryQuery(
        url=url,
        from_run_id=from_run_id,
        to_run_id=to_run_id,
        week_number=week_number,
        limit=limit,
    )
    history = await services.diff_service.get_diff_history(query)
    return {"status": "success", **history.model_dump(mode="json")}


@router.post("/report")
async def generate_report(
    payload: ReportRequest,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    report = await services.report_service.generate_report(payload)
    return {"status": "success", "report": report.model_dump(mode="json", by_alias=True)}
