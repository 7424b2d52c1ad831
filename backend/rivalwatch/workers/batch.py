"""Batch fan-out: one workflow-start message per tracked URL or competitor.

Items are read page by page. Every item of a page is scheduled with the same
delay, ``base_delay * (offset // page_size)``, so pages fire one after the
other instead of all at once. Paging stops at the first short page.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from rivalwatch.celery_app import BATCH_TRIGGER_TASK, START_WORKFLOW_TASK, celery
from rivalwatch.comparison import END_OF_WEEK_RUN, START_OF_WEEK_RUN
from rivalwatch.config import settings
from rivalwatch.db import engine
from rivalwatch.metrics import BATCH_MESSAGES_SCHEDULED_TOTAL
from rivalwatch.paths import current_week_number, normalize_week
from rivalwatch.repositories import CompetitorRepository
from rivalwatch.workflows.engine import deterministic_id

logger = logging.getLogger(__name__)

BATCH_KINDS = ("diff", "report")

Enqueue = Callable[[dict[str, Any], int], Any]


def send_start_message(message: dict[str, Any], delay_seconds: int) -> None:
    celery.send_task(
        START_WORKFLOW_TASK,
        kwargs=message,
        countdown=delay_seconds,
        queue="workflows",
        routing_key="workflows",
    )


@dataclass
class BatchResult:
    kind: str
    scheduled: int = 0
    pages: int = 0
    delays: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "scheduled": self.scheduled, "pages": self.pages, "delays": list(self.delays)}


class BatchScheduler:
    def __init__(
        self,
        competitors: CompetitorRepository,
        *,
        enqueue: Enqueue = send_start_message,
        page_size: int = settings.BATCH_PAGE_SIZE,
        base_delay_s: int = settings.BATCH_BASE_DELAY_S,
    ) -> None:
        self.competitors = competitors
        self.enqueue = enqueue
        self.page_size = page_size
        self.base_delay_s = base_delay_s

    async def _page(self, kind: str, limit: int, offset: int) -> list[Any]:
        if kind == "diff":
            return await self.competitors.list_urls(limit=limit, offset=offset)
        return await self.competitors.list_competitor_ids(limit=limit, offset=offset)

    @staticmethod
    def _params(kind: str, item: Any, run_id: str, week: str) -> dict[str, Any]:
        if kind == "diff":
            return {"url": item, "runId": run_id, "weekNumber": week}
        return {
            "competitorId": item,
            "runId1": START_OF_WEEK_RUN,
            "runId2": END_OF_WEEK_RUN,
            "weekNumber": week,
        }

    async def trigger(
        self,
        kind: str,
        *,
        page_size: int | None = None,
        offset_start: int = 0,
        run_id: str | None = None,
        week_number: str | None = None,
    ) -> BatchResult:
        if kind not in BATCH_KINDS:
            raise ValueError(f"Unknown batch kind: {kind!r}")
        page_size = page_size or self.page_size
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if offset_start < 0:
            raise ValueError("offset_start must be non-negative")

        week = normalize_week(week_number) if week_number else current_week_number()
        run_id = run_id or START_OF_WEEK_RUN
        result = BatchResult(kind=kind)
        offset = offset_start

        while True:
            items = await self._page(kind, page_size, offset)
            delay = self.base_delay_s * (offset // page_size)
            for item in items:
                params = self._params(kind, item, run_id, week)
                self.enqueue(
                    {
                        "workflow_type": kind,
                        "params": params,
                        "workflow_id": deterministic_id(kind, params),
                    },
                    delay,
                )
                result.scheduled += 1
                BATCH_MESSAGES_SCHEDULED_TOTAL.labels(kind=kind).inc()
            if items:
                result.pages += 1
                result.delays.append(delay)
                logger.info("Scheduled %d %s workflows at offset %d (delay %ds)", len(items), kind, offset, delay)
            if len(items) < page_size:
                break
            offset += page_size

        logger.info("Batch %s complete: %d workflows over %d pages", kind, result.scheduled, result.pages)
        return result


async def _run_batch(kind: str, **kwargs: Any) -> dict[str, Any]:
    try:
        result = await BatchScheduler(CompetitorRepository()).trigger(kind, **kwargs)
        return result.to_dict()
    finally:
        await engine.dispose()


@celery.task(name=BATCH_TRIGGER_TASK)
def run_batch_trigger(
    kind: str,
    run_id: str | None = None,
    page_size: int | None = None,
    offset_start: int = 0,
    week_number: str | None = None,
) -> dict[str, Any]:
    """Celery Beat entry point for the weekly fan-out."""
    return asyncio.run(
        _run_batch(
            kind,
            run_id=run_id,
            page_size=page_size,
            offset_start=offset_start,
            week_number=week_number,
        )
    )
