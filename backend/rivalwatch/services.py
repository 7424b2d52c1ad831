"""Explicit construction of every pipeline component from settings."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from rivalwatch.capture import CaptureService
from rivalwatch.config import Settings, settings
from rivalwatch.diff_service import DiffService
from rivalwatch.llm import GeminiTextDiffer
from rivalwatch.notification import NotificationService
from rivalwatch.report_service import ReportService
from rivalwatch.repositories import CompetitorRepository, DiffRepository
from rivalwatch.storage import LocalBlobStore
from rivalwatch.workflows.diff import ScreenshotDiffWorkflow
from rivalwatch.workflows.engine import WorkflowEngine
from rivalwatch.workflows.report import CompetitorReportWorkflow
from rivalwatch.workflows.store import SqlWorkflowRepository


@dataclass
class Services:
    storage: LocalBlobStore
    capture: CaptureService
    diffs: DiffRepository
    competitors: CompetitorRepository
    diff_service: DiffService
    report_service: ReportService
    notifier: NotificationService
    engine: WorkflowEngine


def build_services(
    config: Settings = settings,
    *,
    dispatch: Callable[[str], Any] | None = None,
) -> Services:
    storage = LocalBlobStore(config.BLOB_STORE_ROOT)
    capture = CaptureService(
        storage,
        api_key=config.SCREENSHOT_SERVICE_API_KEY,
        origin=config.SCREENSHOT_SERVICE_ORIGIN,
        timeout_s=config.CAPTURE_TIMEOUT_S,
    )
    differ = GeminiTextDiffer(
        api_key=config.GEMINI_API_KEY,
        model_name=config.LLM_MODEL,
        diff_temperature=config.LLM_DIFF_TEMPERATURE,
        summary_temperature=config.LLM_SUMMARY_TEMPERATURE,
        request_timeout_s=config.LLM_REQUEST_TIMEOUT_S,
    )
    diffs = DiffRepository()
    competitors = CompetitorRepository()
    diff_service = DiffService(storage, diffs, differ)
    report_service = ReportService(diffs, differ)
    notifier = NotificationService(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        from_email=config.FROM_EMAIL,
        user=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        use_tls=config.SMTP_USE_TLS,
        connect_timeout_s=config.SMTP_TIMEOUT_S,
        send_deadline_s=config.SMTP_SEND_DEADLINE_S,
    )

    workflows = {
        ScreenshotDiffWorkflow.name: ScreenshotDiffWorkflow(capture, diff_service),
        CompetitorReportWorkflow.name: CompetitorReportWorkflow(competitors, report_service, notifier),
    }
    engine = WorkflowEngine(SqlWorkflowRepository(), workflows, dispatch=dispatch)

    return Services(
        storage=storage,
        capture=capture,
        diffs=diffs,
        competitors=competitors,
        diff_service=diff_service,
        report_service=report_service,
        notifier=notifier,
        engine=engine,
    )
