from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rivalwatch.db import Base
from rivalwatch.models.workflow import WorkflowInstance, WorkflowState, WorkflowStepRecord
from rivalwatch.workflows.store import SqlWorkflowRepository

TABLES = [WorkflowInstance.__table__, WorkflowStepRecord.__table__]
PARAMS = {"url": "https://rival.example/", "runId": "1", "weekNumber": "12"}


async def _repository() -> SqlWorkflowRepository:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=TABLES))
    return SqlWorkflowRepository(async_sessionmaker(engine, expire_on_commit=False))


def test_create_or_get_is_idempotent() -> None:
    async def scenario():
        repo = await _repository()
        first, created_first = await repo.create_or_get("wf-1", "diff", PARAMS)
        second, created_second = await repo.create_or_get("wf-1", "diff", {"url": "ignored"})
        return first, created_first, second, created_second

    first, created_first, second, created_second = asyncio.run(scenario())
    assert created_first is True
    assert created_second is False
    assert first.state is WorkflowState.QUEUED
    assert second.params == PARAMS


def test_state_transitions_round_trip() -> None:
    async def scenario():
        repo = await _repository()
        await repo.create_or_get("wf-1", "diff", PARAMS)
        await repo.mark_running("wf-1", 1, "take-screenshot")
        running = await repo.get("wf-1")
        await repo.mark_errored("wf-1", "Screenshot failed: boom", retryable=True)
        errored = await repo.get("wf-1")
        await repo.mark_complete("wf-1", {"status": "success"})
        complete = await repo.get("wf-1")
        return running, errored, complete

    running, errored, complete = asyncio.run(scenario())
    assert running.state is WorkflowState.RUNNING
    assert running.current_step == "take-screenshot"
    assert errored.status().error == "Screenshot failed: boom"
    assert errored.retryable is True
    assert complete.state is WorkflowState.COMPLETE
    assert complete.output == {"status": "success"}
    assert complete.error is None


def test_step_ledger_keeps_first_output() -> None:
    async def scenario():
        repo = await _repository()
        await repo.create_or_get("wf-1", "diff", PARAMS)
        missing = await repo.get_step("wf-1", "create-diff")
        await repo.record_step("wf-1", "create-diff", {"differences": {"pricing": ["a"]}}, 2)
        await repo.record_step("wf-1", "create-diff", {"differences": {}}, 1)
        return missing, await repo.get_step("wf-1", "create-diff")

    missing, entry = asyncio.run(scenario())
    assert missing is None
    assert entry.output == {"differences": {"pricing": ["a"]}}
    assert entry.attempts == 2


def test_unknown_instance_is_none() -> None:
    async def scenario():
        repo = await _repository()
        return await repo.get("nope")

    assert asyncio.run(scenario()) is None
