"""Competitor report workflow: fetch, aggregate, enrich, notify."""
from __future__ import annotations

import logging
from typing import Any

from rivalwatch.errors import CompetitorNotFoundError
from rivalwatch.notification import NotificationService, report_to_email_params
from rivalwatch.paths import current_week_number
from rivalwatch.report_service import ReportService
from rivalwatch.repositories import CompetitorRepository
from rivalwatch.schemas.report import AggregatedReport, ReportRequest
from rivalwatch.schemas.workflow import ReportWorkflowParams
from rivalwatch.workflows.engine import StepPolicy, WorkflowStep

logger = logging.getLogger(__name__)

FETCH_POLICY = StepPolicy(retries=3, delay_s=10, timeout_s=30)
REPORT_POLICY = StepPolicy(retries=3, delay_s=30, timeout_s=300)
ENRICH_POLICY = StepPolicy(retries=3, delay_s=30, timeout_s=300)
NOTIFY_POLICY = StepPolicy(retries=5, delay_s=60, timeout_s=600)


class CompetitorReportWorkflow:
    name = "report"

    def __init__(
        self,
        competitors: CompetitorRepository,
        reports: ReportService,
        notifier: NotificationService,
    ) -> None:
        self.competitors = competitors
        self.reports = reports
        self.notifier = notifier

    def normalize(self, params: dict[str, Any]) -> dict[str, Any]:
        parsed = ReportWorkflowParams.model_validate(params)
        if parsed.week_number is None:
            parsed.week_number = current_week_number()
        return parsed.model_dump(by_alias=True)

    async def run(self, params: dict[str, Any], step: WorkflowStep) -> dict[str, Any]:
        p = ReportWorkflowParams.model_validate(params)
        week = p.week_number or current_week_number()

        async def fetch_competitor() -> dict[str, Any]:
            competitor = await self.competitors.get_competitor(p.competitor_id)
            if competitor is None:
                raise CompetitorNotFoundError(p.competitor_id)
            return competitor.to_dict()

        competitor = await step.do("fetch-competitor-details", FETCH_POLICY, fetch_competitor)

        async def fetch_subscribers() -> list[str]:
            return await self.competitors.active_subscribers(p.competitor_id)

        subscribers = await step.do("fetch-subscriber-details", FETCH_POLICY, fetch_subscribers)

        async def fetch_report() -> dict[str, Any]:
            report = await self.reports.generate_report(
                ReportRequest(
                    urls=competitor["urls"],
                    run_id1=p.run_id1,
                    run_id2=p.run_id2,
                    week_number=week,
                    competitor=competitor["name"],
                    enriched=False,
                )
            )
            return report.model_dump(mode="json", by_alias=True)

        raw_report = await step.do("fetch-report", REPORT_POLICY, fetch_report)

        async def enrich_report() -> dict[str, Any]:
            enriched = await self.reports.enrich_report(AggregatedReport.model_validate(raw_report))
            return enriched.model_dump(mode="json", by_alias=True)

        enriched_report = await step.do("enrich-report", ENRICH_POLICY, enrich_report)

        if not subscribers:
            logger.info("No subscribers for competitor %s, skipping notifications", p.competitor_id)
            return {
                "status": "success",
                "competitor": competitor,
                "enrichedReport": enriched_report,
                "metadata": {
                    "subscriberCount": 0,
                    "message": "No subscribers found for this competitor",
                },
            }

        async def send_notifications() -> dict[str, Any]:
            email = report_to_email_params(AggregatedReport.model_validate(enriched_report))
            results = await self.notifier.send(email, subscribers)
            return results.model_dump(mode="json")

        notifications = await step.do("send-notifications", NOTIFY_POLICY, send_notifications)

        return {
            "status": "success",
            "competitor": competitor,
            "enrichedReport": enriched_report,
            "notifications": notifications,
            "metadata": {
                "subscriberCount": len(subscribers),
                "successfulNotifications": len(notifications["successful"]),
                "failedNotifications": len(notifications["failed"]),
            },
        }
