"""Diff engine: compare two text snapshots of a URL and keep the history."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from rivalwatch.errors import ContentNotFoundError, InvalidRunRangeError
from rivalwatch.llm import TextDiffer
from rivalwatch.metrics import DIFF_CONTENT_MISSING_TOTAL, DIFFS_CREATED_TOTAL
from rivalwatch.paths import current_week_number, locate
from rivalwatch.repositories import DiffRepository
from rivalwatch.schemas.diff import (
    DiffHistory,
    DiffHistoryQuery,
    DiffMetadata,
    DiffRequest,
    DiffResult,
)
from rivalwatch.storage import BlobStore

logger = logging.getLogger(__name__)


class DiffService:
    def __init__(self, storage: BlobStore, diffs: DiffRepository, differ: TextDiffer) -> None:
        self.storage = storage
        self.diffs = diffs
        self.differ = differ

    async def create_diff(self, request: DiffRequest) -> DiffResult:
        """Categorize changes from run_id1 to run_id2 and append a history row.

        Raises `ContentNotFoundError` (terminal) when either text snapshot is
        missing; nothing is written in that case.
        """
        week1 = request.week_number1 or current_week_number()
        week2 = request.week_number2 or current_week_number()
        first_ref = locate(request.url, week1, request.run_id1)
        second_ref = locate(request.url, week2, request.run_id2)

        first, second = await asyncio.gather(
            self.storage.get(first_ref.content_path),
            self.storage.get(second_ref.content_path),
        )
        if first is None or second is None:
            which = "both" if first is None and second is None else ("first" if first is None else "second")
            DIFF_CONTENT_MISSING_TOTAL.labels(which=which).inc()
            logger.warning(
                "Content missing for diff of %s (%s/%s vs %s/%s): %s",
                request.url,
                week1,
                request.run_id1,
                week2,
                request.run_id2,
                which,
            )
            raise ContentNotFoundError(which)

        differences = await self.differ.categorize(first.text(), second.text())

        # Stored under the week of the more recent run.
        await self.diffs.insert(
            url=request.url,
            run_id1=request.run_id1,
            run_id2=request.run_id2,
            week_number=week2,
            differences=differences,
        )
        DIFFS_CREATED_TOTAL.inc()
        logger.info("Diff stored for %s (%s/%s -> %s/%s)", request.url, week1, request.run_id1, week2, request.run_id2)

        return DiffResult(
            differences=differences,
            metadata=DiffMetadata(
                url=request.url,
                run_id1=request.run_id1,
                run_id2=request.run_id2,
                week_number1=week1,
                week_number2=week2,
                analyzed_at=datetime.now(timezone.utc).isoformat(),
            ),
        )

    async def get_diff_history(self, query: DiffHistoryQuery) -> DiffHistory:
        if query.from_run_id and query.to_run_id and query.from_run_id > query.to_run_id:
            raise InvalidRunRangeError("fromRunId must be earlier than or equal to toRunId")

        rows = await self.diffs.history(
            url=query.url,
            from_run_id=query.from_run_id,
            to_run_id=query.to_run_id,
            week_number=query.week_number,
            limit=query.limit,
        )
        results = [row.to_dict() for row in rows]
        return DiffHistory(
            results=results,
            metadata={
                "url": query.url,
                "weekNumber": query.week_number or "all",
                "dateRange": {
                    "fromRun": query.from_run_id or "beginning",
                    "toRun": query.to_run_id or "present",
                },
                "count": len(results),
                "limit": query.limit,
            },
        )
