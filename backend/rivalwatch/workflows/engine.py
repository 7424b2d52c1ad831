"""Durable workflow engine.

A workflow is an async ``run(params, step)`` coroutine built from named
steps. ``step.do(name, policy, fn)`` checks the step ledger first and
returns the memoized output when the step already completed for this
instance; otherwise it runs ``fn`` under the step's retry/backoff/timeout
policy and records the output before returning it. Re-running an instance
after a crash therefore resumes at the first unfinished step.

Instance lifecycle: queued -> running -> complete | errored. A
``NonRetryableError`` ends the instance on the first occurrence
(``retryable=False``); any other error is retried in place until the step's
budget is spent, then ends the instance with ``retryable=True``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from rivalwatch.errors import NonRetryableError
from rivalwatch.metrics import WORKFLOW_RUNS_TOTAL, WORKFLOW_STEP_ATTEMPTS_TOTAL
from rivalwatch.models.workflow import WorkflowState
from rivalwatch.schemas.workflow import WorkflowStatus

logger = logging.getLogger(__name__)

TERMINAL_STATES = (WorkflowState.COMPLETE, WorkflowState.ERRORED)

# Fixed namespace for ids of batch-started instances.
WORKFLOW_ID_NAMESPACE = uuid.UUID("6f1c1d0e-55a3-4b8e-9a51-2b7f0d3c8e42")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class StepPolicy:
    retries: int
    delay_s: float
    timeout_s: float
    backoff: str = "exponential"  # exponential | constant

    def wait(self):
        if self.backoff == "constant":
            return wait_fixed(self.delay_s)
        return wait_exponential(multiplier=self.delay_s, min=self.delay_s)


@dataclass
class WorkflowRecord:
    id: str
    workflow_type: str
    params: dict[str, Any]
    state: WorkflowState = WorkflowState.QUEUED
    step_index: int = 0
    current_step: str | None = None
    output: Any = None
    error: str | None = None
    retryable: bool | None = None

    def status(self) -> WorkflowStatus:
        return WorkflowStatus(state=self.state.value, error=self.error, output=self.output)


@dataclass
class LedgerEntry:
    step_name: str
    output: Any = None
    attempts: int = 1


class WorkflowRepository(Protocol):
    async def create_or_get(
        self, instance_id: str, workflow_type: str, params: dict[str, Any]
    ) -> tuple[WorkflowRecord, bool]: ...

    async def get(self, instance_id: str) -> WorkflowRecord | None: ...

    async def mark_running(self, instance_id: str, step_index: int, step_name: str | None) -> None: ...

    async def mark_complete(self, instance_id: str, output: Any) -> None: ...

    async def mark_errored(self, instance_id: str, error: str, retryable: bool) -> None: ...

    async def get_step(self, instance_id: str, step_name: str) -> LedgerEntry | None: ...

    async def record_step(self, instance_id: str, step_name: str, output: Any, attempts: int) -> None: ...


class Workflow(Protocol):
    name: str

    def normalize(self, params: dict[str, Any]) -> dict[str, Any]: ...

    async def run(self, params: dict[str, Any], step: "WorkflowStep") -> Any: ...


def deterministic_id(workflow_type: str, params: dict[str, Any]) -> str:
    """Stable id for (type, params); redelivered start messages map to one instance."""
    key = f"{workflow_type}:{json.dumps(params, sort_keys=True, separators=(',', ':'))}"
    return str(uuid.uuid5(WORKFLOW_ID_NAMESPACE, key))


@dataclass
class WorkflowStep:
    instance_id: str
    workflow_type: str
    repository: WorkflowRepository
    sleep: Sleep = asyncio.sleep
    _index: int = field(default=0, init=False)

    async def do(self, name: str, policy: StepPolicy, fn: Callable[[], Awaitable[Any]]) -> Any:
        self._index += 1
        memoized = await self.repository.get_step(self.instance_id, name)
        if memoized is not None:
            logger.info("Step %s of %s already complete, reusing output", name, self.instance_id)
            return memoized.output

        await self.repository.mark_running(self.instance_id, self._index, name)

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Step %s of %s failed (attempt %d/%d), retrying in %.1fs: %s",
                name,
                self.instance_id,
                retry_state.attempt_number,
                policy.retries + 1,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                exc,
            )

        attempts = 0
        output: Any = None
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.retries + 1),
            wait=policy.wait(),
            retry=retry_if_not_exception_type(NonRetryableError),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                output = await self._attempt(name, policy, fn)

        await self.repository.record_step(self.instance_id, name, output, attempts)
        return output

    async def _attempt(self, name: str, policy: StepPolicy, fn: Callable[[], Awaitable[Any]]) -> Any:
        labels = {"workflow": self.workflow_type, "step": name}
        try:
            # Cancels the await only; thread-backed work (SMTP, Gemini) must
            # enforce its own deadline below the step timeout.
            result = await asyncio.wait_for(fn(), timeout=policy.timeout_s)
        except NonRetryableError:
            WORKFLOW_STEP_ATTEMPTS_TOTAL.labels(**labels, outcome="terminal").inc()
            raise
        except asyncio.TimeoutError:
            WORKFLOW_STEP_ATTEMPTS_TOTAL.labels(**labels, outcome="timeout").inc()
            raise
        except Exception:
            WORKFLOW_STEP_ATTEMPTS_TOTAL.labels(**labels, outcome="error").inc()
            raise
        WORKFLOW_STEP_ATTEMPTS_TOTAL.labels(**labels, outcome="success").inc()
        return result


class WorkflowNotFoundError(LookupError):
    pass


class WorkflowEngine:
    def __init__(
        self,
        repository: WorkflowRepository,
        workflows: dict[str, Workflow],
        *,
        dispatch: Callable[[str], Any] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.repository = repository
        self.workflows = workflows
        self.dispatch = dispatch
        self.sleep = sleep

    async def create(
        self,
        workflow_type: str,
        params: dict[str, Any],
        *,
        instance_id: str | None = None,
    ) -> WorkflowRecord:
        """Persist a queued instance and hand its id to the dispatcher.

        Passing an existing ``instance_id`` returns that instance unchanged and
        dispatches only if it never left the queue.
        """
        workflow = self.workflows.get(workflow_type)
        if workflow is None:
            raise WorkflowNotFoundError(f"Unknown workflow type: {workflow_type}")
        record, created = await self.repository.create_or_get(
            instance_id or str(uuid.uuid4()), workflow_type, workflow.normalize(params)
        )
        if created:
            logger.info("Workflow %s created: %s", workflow_type, record.id)
        else:
            logger.info("Workflow %s already exists (state=%s)", record.id, record.state.value)

        if self.dispatch is not None and record.state == WorkflowState.QUEUED:
            self.dispatch(record.id)
        return record

    async def status(self, instance_id: str, workflow_type: str | None = None) -> WorkflowStatus:
        """Status of an instance; with ``workflow_type`` the instance must be of that type."""
        record = await self.repository.get(instance_id)
        if record is None or (workflow_type is not None and record.workflow_type != workflow_type):
            raise WorkflowNotFoundError(f"Workflow instance {instance_id} not found")
        return record.status()

    async def execute(self, instance_id: str) -> WorkflowStatus:
        record = await self.repository.get(instance_id)
        if record is None:
            raise WorkflowNotFoundError(f"Workflow instance {instance_id} not found")
        if record.state in TERMINAL_STATES:
            logger.info("Workflow %s already %s, nothing to do", instance_id, record.state.value)
            return record.status()

        workflow = self.workflows[record.workflow_type]
        step = WorkflowStep(
            instance_id=instance_id,
            workflow_type=record.workflow_type,
            repository=self.repository,
            sleep=self.sleep,
        )
        await self.repository.mark_running(instance_id, record.step_index, record.current_step)

        try:
            output = await workflow.run(record.params, step)
        except NonRetryableError as exc:
            await self._fail(record, str(exc), retryable=False)
        except Exception as exc:
            logger.exception("Workflow %s exhausted retries", instance_id)
            await self._fail(record, str(exc) or type(exc).__name__, retryable=True)
        else:
            await self.repository.mark_complete(instance_id, output)
            WORKFLOW_RUNS_TOTAL.labels(workflow=record.workflow_type, state=WorkflowState.COMPLETE.value).inc()
            logger.info("Workflow %s complete", instance_id)

        return await self.status(instance_id)

    async def _fail(self, record: WorkflowRecord, error: str, *, retryable: bool) -> None:
        await self.repository.mark_errored(record.id, error, retryable)
        WORKFLOW_RUNS_TOTAL.labels(workflow=record.workflow_type, state=WorkflowState.ERRORED.value).inc()
        logger.error(
            "Workflow %s (%s) errored: %s",
            record.id,
            record.workflow_type,
            error,
            extra={"retryable": retryable},
        )
