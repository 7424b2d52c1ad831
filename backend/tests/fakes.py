"""In-memory collaborators for service and workflow tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from rivalwatch.models.diff import DiffRecord
from rivalwatch.models.workflow import WorkflowState
from rivalwatch.repositories import CompetitorWithUrls
from rivalwatch.schemas.diff import DiffAnalysis
from rivalwatch.schemas.email import NotificationResults
from rivalwatch.storage import BlobObject
from rivalwatch.workflows.engine import LedgerEntry, WorkflowRecord


class InMemoryBlobStore:
    def __init__(self) -> None:
        self.objects: dict[str, BlobObject] = {}

    async def put(self, path: str, data: bytes | str, metadata: dict[str, Any] | None = None) -> str:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self.objects[path] = BlobObject(path=path, data=payload, metadata=dict(metadata or {}))
        return path

    async def get(self, path: str) -> BlobObject | None:
        return self.objects.get(path)


class FakeDiffRepository:
    """Same filter semantics as the SQL repository, over a list."""

    def __init__(self, failing_urls: set[str] | None = None) -> None:
        self.rows: list[DiffRecord] = []
        self.failing_urls = failing_urls or set()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def insert(self, *, url: str, run_id1: str, run_id2: str, week_number: str, differences: DiffAnalysis) -> DiffRecord:
        self._clock += timedelta(seconds=1)
        row = DiffRecord(
            id=len(self.rows) + 1,
            url=url,
            run_id1=run_id1,
            run_id2=run_id2,
            week_number=week_number,
            created_at=self._clock,
            **{f"{name}_changes": list(changes) for name, changes in differences.model_dump().items()},
        )
        self.rows.append(row)
        return row

    async def history(
        self,
        *,
        url: str,
        from_run_id: str | None = None,
        to_run_id: str | None = None,
        week_number: str | None = None,
        limit: int = 10,
    ) -> list[DiffRecord]:
        if url in self.failing_urls:
            raise RuntimeError(f"database unavailable for {url}")
        rows = [r for r in self.rows if r.url == url]
        if week_number:
            rows = [r for r in rows if r.week_number == week_number]
        if from_run_id and to_run_id:
            rows = [
                r for r in rows
                if from_run_id <= r.run_id1 <= to_run_id or from_run_id <= r.run_id2 <= to_run_id
            ]
        elif from_run_id:
            rows = [r for r in rows if r.run_id1 >= from_run_id or r.run_id2 >= from_run_id]
        elif to_run_id:
            rows = [r for r in rows if r.run_id1 <= to_run_id or r.run_id2 <= to_run_id]
        rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return rows[:limit]


class StubDiffer:
    def __init__(
        self,
        analysis: DiffAnalysis | None = None,
        summaries: dict[str, str] | None = None,
        summarize_error: Exception | None = None,
    ) -> None:
        self.analysis = analysis or DiffAnalysis()
        self.summaries = summaries or {}
        self.summarize_error = summarize_error
        self.calls: list[tuple[str, str]] = []
        self.summarize_calls = 0

    async def categorize(self, text_a: str, text_b: str) -> DiffAnalysis:
        self.calls.append((text_a, text_b))
        return self.analysis

    async def summarize(self, report: Any) -> dict[str, str]:
        self.summarize_calls += 1
        if self.summarize_error is not None:
            raise self.summarize_error
        return dict(self.summaries)


class InMemoryWorkflowRepository:
    def __init__(self) -> None:
        self.instances: dict[str, WorkflowRecord] = {}
        self.ledger: dict[tuple[str, str], LedgerEntry] = {}

    async def create_or_get(self, instance_id: str, workflow_type: str, params: dict[str, Any]) -> tuple[WorkflowRecord, bool]:
        if instance_id in self.instances:
            return self.instances[instance_id], False
        record = WorkflowRecord(id=instance_id, workflow_type=workflow_type, params=dict(params))
        self.instances[instance_id] = record
        return record, True

    async def get(self, instance_id: str) -> WorkflowRecord | None:
        return self.instances.get(instance_id)

    async def mark_running(self, instance_id: str, step_index: int, step_name: str | None) -> None:
        record = self.instances[instance_id]
        record.state = WorkflowState.RUNNING
        record.step_index = step_index
        record.current_step = step_name

    async def mark_complete(self, instance_id: str, output: Any) -> None:
        record = self.instances[instance_id]
        record.state = WorkflowState.COMPLETE
        record.output = output
        record.error = None

    async def mark_errored(self, instance_id: str, error: str, retryable: bool) -> None:
        record = self.instances[instance_id]
        record.state = WorkflowState.ERRORED
        record.error = error
        record.retryable = retryable

    async def get_step(self, instance_id: str, step_name: str) -> LedgerEntry | None:
        return self.ledger.get((instance_id, step_name))

    async def record_step(self, instance_id: str, step_name: str, output: Any, attempts: int) -> None:
        self.ledger.setdefault((instance_id, step_name), LedgerEntry(step_name=step_name, output=output, attempts=attempts))


class FakeCompetitorRepository:
    def __init__(
        self,
        competitors: list[CompetitorWithUrls] | None = None,
        subscribers: dict[int, list[str]] | None = None,
        urls: list[str] | None = None,
    ) -> None:
        self.competitors = {c.id: c for c in competitors or []}
        self.subscribers = subscribers or {}
        self.urls = urls if urls is not None else sorted({u for c in self.competitors.values() for u in c.urls})
        self.page_calls: list[tuple[int, int]] = []

    async def get_competitor(self, competitor_id: int) -> CompetitorWithUrls | None:
        return self.competitors.get(competitor_id)

    async def active_subscribers(self, competitor_id: int) -> list[str]:
        return list(self.subscribers.get(competitor_id, []))

    async def list_urls(self, *, limit: int, offset: int) -> list[str]:
        self.page_calls.append((limit, offset))
        return self.urls[offset:offset + limit]

    async def list_competitor_ids(self, *, limit: int, offset: int) -> list[int]:
        self.page_calls.append((limit, offset))
        return sorted(self.competitors)[offset:offset + limit]


class RecordingNotifier:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[Any, list[str]]] = []

    async def send(self, params: Any, recipients: list[str]) -> NotificationResults:
        self.sent.append((params, list(recipients)))
        return NotificationResults(
            successful=[r for r in recipients if r not in self.failing],
            failed=[r for r in recipients if r in self.failing],
        )


class SleepRecorder:
    """Drop-in for asyncio.sleep that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
