"""Workflow worker: turns queue messages into workflow instances and runs them."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from rivalwatch.celery_app import RUN_WORKFLOW_TASK, START_WORKFLOW_TASK, celery
from rivalwatch.db import engine
from rivalwatch.services import build_services

logger = logging.getLogger(__name__)


def dispatch_run(instance_id: str) -> None:
    celery.send_task(RUN_WORKFLOW_TASK, args=[instance_id], queue="workflows", routing_key="workflows")


async def _start(workflow_type: str, params: dict[str, Any], workflow_id: str | None) -> dict[str, Any]:
    try:
        services = build_services(dispatch=dispatch_run)
        record = await services.engine.create(workflow_type, params, instance_id=workflow_id)
        return {"workflowId": record.id, "status": record.status().model_dump(mode="json", by_alias=True)}
    finally:
        await engine.dispose()


async def _execute(instance_id: str) -> dict[str, Any]:
    try:
        status = await build_services().engine.execute(instance_id)
        return status.model_dump(mode="json", by_alias=True)
    finally:
        await engine.dispose()


@celery.task(name=START_WORKFLOW_TASK)
def start_workflow(workflow_type: str, params: dict[str, Any], workflow_id: str | None = None) -> dict[str, Any]:
    """Create (or find) the instance for a batch message and queue its execution.

    The message is acknowledged only after this returns, and a redelivered
    message resolves to the same instance through its deterministic id.
    """
    result = asyncio.run(_start(workflow_type, params, workflow_id))
    logger.info("Started %s workflow %s", workflow_type, result["workflowId"])
    return result


@celery.task(name=RUN_WORKFLOW_TASK)
def run_workflow(instance_id: str) -> dict[str, Any]:
    return asyncio.run(_execute(instance_id))
