from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import field_validator

from rivalwatch.paths import normalize_week
from rivalwatch.schemas.base import CamelModel


class DiffWorkflowParams(CamelModel):
    url: str
    run_id: Literal["1", "7"]
    week_number: Optional[str] = None

    @field_validator("week_number")
    @classmethod
    def validate_week(cls, v: str | None) -> str | None:
        return normalize_week(v) if v else None


class ReportWorkflowParams(CamelModel):
    competitor_id: int
    run_id1: str = "1"
    run_id2: str = "7"
    week_number: Optional[str] = None

    @field_validator("week_number")
    @classmethod
    def validate_week(cls, v: str | None) -> str | None:
        return normalize_week(v) if v else None


class WorkflowStatus(CamelModel):
    state: str
    error: Optional[str] = None
    output: Optional[Any] = None


class WorkflowStatusResponse(CamelModel):
    workflow_id: str
    type: str
    status: WorkflowStatus
