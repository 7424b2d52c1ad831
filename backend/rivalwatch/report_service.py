"""Report aggregation over the stored diff history of many URLs.

Every URL is looked up concurrently and classified as successful, skipped
(no diff in range) or failed (lookup raised). A single URL never fails the
report. Category changes are merged into deduplicated sets, so the result
does not depend on the order in which the lookups complete.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rivalwatch.llm import TextDiffer
from rivalwatch.metrics import REPORT_URL_OUTCOMES_TOTAL
from rivalwatch.models.diff import CATEGORIES, DiffRecord
from rivalwatch.paths import current_week_number
from rivalwatch.repositories import DiffRepository
from rivalwatch.schemas.report import (
    AggregatedReport,
    ProcessedUrls,
    ProcessingStats,
    ReportCategory,
    ReportMetadata,
    ReportRequest,
    RunRange,
)

logger = logging.getLogger(__name__)

NO_DIFFS_MESSAGE = "No diffs found in specified time range"
ENRICHMENT_ERROR_KEY = "enrichment"


@dataclass
class _UrlOutcome:
    url: str
    status: str  # successful | skipped | failed
    diff: DiffRecord | None = None
    error: str | None = None


@dataclass
class _CategoryAccumulator:
    changes: dict[str, None] = field(default_factory=dict)
    urls: dict[str, dict[str, None]] = field(default_factory=dict)

    def add(self, url: str, change: str) -> None:
        self.changes.setdefault(change, None)
        self.urls.setdefault(url, {}).setdefault(change, None)

    def build(self) -> ReportCategory:
        return ReportCategory(
            changes=sorted(self.changes),
            urls={url: list(changes) for url, changes in self.urls.items()},
        )


class ReportService:
    def __init__(self, diffs: DiffRepository, differ: TextDiffer) -> None:
        self.diffs = diffs
        self.differ = differ

    async def _latest_diff(self, url: str, request: ReportRequest, week: str) -> _UrlOutcome:
        try:
            rows = await self.diffs.history(
                url=url,
                from_run_id=request.run_id1,
                to_run_id=request.run_id2,
                week_number=week,
                limit=1,
            )
        except Exception as exc:
            logger.warning("Diff lookup failed for %s: %s", url, exc)
            return _UrlOutcome(url=url, status="failed", error=str(exc) or type(exc).__name__)
        if not rows:
            return _UrlOutcome(url=url, status="skipped", error=NO_DIFFS_MESSAGE)
        return _UrlOutcome(url=url, status="successful", diff=rows[0])

    async def generate_report(self, request: ReportRequest) -> AggregatedReport:
        week = request.week_number or current_week_number()
        outcomes = await asyncio.gather(*(self._latest_diff(url, request, week) for url in request.urls))

        accumulators = {name: _CategoryAccumulator() for name in CATEGORIES}
        processed = ProcessedUrls()
        errors: dict[str, str] = {}

        for outcome in outcomes:
            REPORT_URL_OUTCOMES_TOTAL.labels(outcome=outcome.status).inc()
            getattr(processed, outcome.status).append(outcome.url)
            if outcome.error is not None:
                errors[outcome.url] = outcome.error
            if outcome.diff is None:
                continue
            for name, changes in outcome.diff.categories.items():
                for change in changes or []:
                    accumulators[name].add(outcome.url, change)

        processed.successful.sort()
        processed.failed.sort()
        processed.skipped.sort()

        report = AggregatedReport(
            categories={name: acc.build() for name, acc in accumulators.items()},
            metadata=ReportMetadata(
                generated_at=datetime.now(timezone.utc).isoformat(),
                week_number=week,
                run_range=RunRange(from_run=request.run_id1 or "", to_run=request.run_id2 or ""),
                competitor=request.competitor,
                url_count=len(request.urls),
                processed_urls=processed,
                processing_stats=ProcessingStats(
                    total_urls=len(request.urls),
                    success_count=len(processed.successful),
                    failure_count=len(processed.failed),
                    skipped_count=len(processed.skipped),
                ),
                errors=errors,
            ),
        )
        logger.info(
            "Report generated for %s: %d ok, %d skipped, %d failed",
            request.competitor or "<unnamed>",
            len(processed.successful),
            len(processed.skipped),
            len(processed.failed),
        )

        if request.enriched:
            report = await self.enrich_report(report)
        return report

    async def enrich_report(self, report: AggregatedReport) -> AggregatedReport:
        """Attach a one-line summary to every category that has changes.

        Failure leaves the report unenriched and records the reason under
        the reserved ``"enrichment"`` error key.
        """
        enriched = report.model_copy(deep=True)
        if not any(category.changes for category in report.categories.values()):
            # Nothing to summarize.
            enriched.metadata.enriched = True
            return enriched

        try:
            summaries = await self.differ.summarize(report)
        except Exception as exc:
            logger.warning("Report enrichment failed for %s: %s", report.metadata.competitor, exc)
            enriched.metadata.errors[ENRICHMENT_ERROR_KEY] = str(exc) or type(exc).__name__
            enriched.metadata.enriched = False
            return enriched

        for name, category in enriched.categories.items():
            if category.changes:
                category.summary = summaries.get(name) or "No significant changes detected."
        enriched.metadata.enriched = True
        return enriched
