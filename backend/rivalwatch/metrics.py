"""Prometheus metrics for pipeline observability."""
from __future__ import annotations

from prometheus_client import Counter, Histogram


CAPTURE_ATTEMPTS_TOTAL = Counter(
    "rivalwatch_capture_attempts_total",
    "Capture vendor calls by outcome",
    ["status_class"],
)

CAPTURE_LATENCY_SECONDS = Histogram(
    "rivalwatch_capture_latency_seconds",
    "Capture vendor latency",
    buckets=(0.5, 1, 2, 5, 10, 20, 40, 60, 90, 120),
)

DIFFS_CREATED_TOTAL = Counter(
    "rivalwatch_diffs_created_total",
    "Diff records persisted",
)

DIFF_CONTENT_MISSING_TOTAL = Counter(
    "rivalwatch_diff_content_missing_total",
    "Diff attempts aborted because a text snapshot was missing",
    ["which"],
)

REPORT_URL_OUTCOMES_TOTAL = Counter(
    "rivalwatch_report_url_outcomes_total",
    "Per-URL outcomes during report aggregation",
    ["outcome"],
)

WORKFLOW_STEP_ATTEMPTS_TOTAL = Counter(
    "rivalwatch_workflow_step_attempts_total",
    "Workflow step attempts by outcome",
    ["workflow", "step", "outcome"],
)

WORKFLOW_RUNS_TOTAL = Counter(
    "rivalwatch_workflow_runs_total",
    "Workflow instances reaching a terminal state",
    ["workflow", "state"],
)

BATCH_MESSAGES_SCHEDULED_TOTAL = Counter(
    "rivalwatch_batch_messages_scheduled_total",
    "Workflow-start messages scheduled by the batch fan-out",
    ["kind"],
)

NOTIFICATIONS_SENT_TOTAL = Counter(
    "rivalwatch_notifications_sent_total",
    "Emails sent by outcome",
    ["template", "outcome"],
)
