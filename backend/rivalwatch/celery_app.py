"""Celery application: RabbitMQ broker, Redis result backend.

Two queues: ``workflows`` runs workflow instances, ``batch`` runs the weekly
fan-out that enqueues workflow-start messages.
"""
from __future__ import annotations

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init
from kombu import Exchange, Queue

from rivalwatch.config import settings
from rivalwatch.logging_config import setup_logging
from rivalwatch.observability import setup_opentelemetry

celery = Celery(
    "rivalwatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
)

# ── Serialisation ──
celery.conf.accept_content = ["json"]
celery.conf.task_serializer = "json"
celery.conf.result_serializer = "json"
celery.conf.timezone = "UTC"
celery.conf.enable_utc = True

# ── Reliability (at-least-once) ──
celery.conf.task_acks_late = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.task_reject_on_worker_lost = True

# ── Exchanges & Queues ──
default_exchange = Exchange("rivalwatch", type="direct")

celery.conf.task_queues = (
    Queue("workflows", default_exchange, routing_key="workflows"),
    Queue("batch", default_exchange, routing_key="batch"),
)

celery.conf.task_default_queue = "workflows"
celery.conf.task_default_exchange = "rivalwatch"
celery.conf.task_default_routing_key = "workflows"

START_WORKFLOW_TASK = "rivalwatch.workers.workflows.start_workflow"
RUN_WORKFLOW_TASK = "rivalwatch.workers.workflows.run_workflow"
BATCH_TRIGGER_TASK = "rivalwatch.workers.batch.run_batch_trigger"

# Task modules loaded by the worker process.
celery.conf.include = ["rivalwatch.workers.workflows", "rivalwatch.workers.batch"]

celery.conf.task_routes = {
    START_WORKFLOW_TASK: {"queue": "workflows"},
    RUN_WORKFLOW_TASK: {"queue": "workflows"},
    BATCH_TRIGGER_TASK: {"queue": "batch"},
}

# ── Beat Schedule ──
# Run "1" opens the week, run "7" closes it; reports go out after run "7".
celery.conf.beat_schedule = {
    "diff-run-1-monday": {
        "task": BATCH_TRIGGER_TASK,
        "schedule": crontab(minute=0, hour=6, day_of_week="mon"),
        "kwargs": {"kind": "diff", "run_id": "1"},
    },
    "diff-run-7-saturday": {
        "task": BATCH_TRIGGER_TASK,
        "schedule": crontab(minute=0, hour=6, day_of_week="sat"),
        "kwargs": {"kind": "diff", "run_id": "7"},
    },
    "reports-saturday-evening": {
        "task": BATCH_TRIGGER_TASK,
        "schedule": crontab(minute=0, hour=18, day_of_week="sat"),
        "kwargs": {"kind": "report"},
    },
}


@worker_process_init.connect
def _init_worker_process(**_kwargs) -> None:
    setup_logging(service="rivalwatch-worker")
    setup_opentelemetry(service_name="rivalwatch-worker")

