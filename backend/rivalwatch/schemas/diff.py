from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from rivalwatch.paths import normalize_week
from rivalwatch.schemas.base import CamelModel


class DiffAnalysis(BaseModel):
    """Six fixed change categories returned by the text-differencing model."""

    branding: list[str] = Field(default_factory=list)
    integration: list[str] = Field(default_factory=list)
    pricing: list[str] = Field(default_factory=list)
    product: list[str] = Field(default_factory=list)
    positioning: list[str] = Field(default_factory=list)
    partnership: list[str] = Field(default_factory=list)


class DiffRequest(CamelModel):
    url: str
    run_id1: str
    run_id2: str
    week_number1: Optional[str] = None
    week_number2: Optional[str] = None

    @field_validator("week_number1", "week_number2")
    @classmethod
    def validate_week(cls, v: str | None) -> str | None:
        return normalize_week(v) if v else None


class DiffMetadata(CamelModel):
    url: str
    run_id1: str
    run_id2: str
    week_number1: str
    week_number2: str
    analyzed_at: str


class DiffResult(CamelModel):
    differences: DiffAnalysis
    metadata: DiffMetadata


class DiffHistoryQuery(CamelModel):
    url: str
    from_run_id: Optional[str] = None
    to_run_id: Optional[str] = None
    week_number: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=100)

    @field_validator("week_number")
    @classmethod
    def validate_week(cls, v: str | None) -> str | None:
        return normalize_week(v) if v else None


class DiffHistory(BaseModel):
    results: list[dict[str, Any]]
    metadata: dict[str, Any]
