from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from rivalwatch.paths import normalize_week
from rivalwatch.schemas.base import CamelModel


class ReportCategory(BaseModel):
    changes: list[str] = Field(default_factory=list)
    urls: dict[str, list[str]] = Field(default_factory=dict)
    summary: Optional[str] = None


class ProcessedUrls(BaseModel):
    successful: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class ProcessingStats(CamelModel):
    total_urls: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0


class RunRange(CamelModel):
    from_run: str = ""
    to_run: str = ""


class ReportMetadata(CamelModel):
    generated_at: str
    week_number: str
    run_range: RunRange = Field(default_factory=RunRange)
    competitor: str = ""
    url_count: int = 0
    processed_urls: ProcessedUrls = Field(default_factory=ProcessedUrls)
    processing_stats: ProcessingStats = Field(default_factory=ProcessingStats)
    errors: dict[str, str] = Field(default_factory=dict)
    enriched: bool = False


class AggregatedReport(BaseModel):
    categories: dict[str, ReportCategory]
    metadata: ReportMetadata


class ReportRequest(CamelModel):
    urls: list[str]
    run_id1: Optional[str] = None
    run_id2: Optional[str] = None
    week_number: Optional[str] = None
    competitor: str = ""
    enriched: bool = False

    @field_validator("week_number")
    @classmethod
    def validate_week(cls, v: str | None) -> str | None:
        return normalize_week(v) if v else None
