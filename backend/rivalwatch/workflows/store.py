"""SQL-backed workflow instance table and step ledger."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rivalwatch.db import async_session_factory
from rivalwatch.models.workflow import WorkflowInstance, WorkflowState, WorkflowStepRecord
from rivalwatch.workflows.engine import LedgerEntry, WorkflowRecord

logger = logging.getLogger(__name__)


def _to_record(row: WorkflowInstance) -> WorkflowRecord:
    return WorkflowRecord(
        id=row.id,
        workflow_type=row.workflow_type,
        params=dict(row.params_json or {}),
        state=WorkflowState(row.state),
        step_index=row.step_index,
        current_step=row.current_step,
        output=row.output_json,
        error=row.error,
        retryable=row.retryable,
    )


class SqlWorkflowRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_factory) -> None:
        self._session_factory = session_factory

    async def get(self, instance_id: str) -> WorkflowRecord | None:
        async with self._session_factory() as session:
            row = await session.get(WorkflowInstance, instance_id)
            return _to_record(row) if row is not None else None

    async def create_or_get(
        self, instance_id: str, workflow_type: str, params: dict[str, Any]
    ) -> tuple[WorkflowRecord, bool]:
        existing = await self.get(instance_id)
        if existing is not None:
            return existing, False

        row = WorkflowInstance(
            id=instance_id,
            workflow_type=workflow_type,
            params_json=params,
            state=WorkflowState.QUEUED.value,
            step_index=0,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                # Lost a race against a redelivered start message.
                await session.rollback()
                created = False
            else:
                created = True

        record = await self.get(instance_id)
        if record is None:
            raise LookupError(f"Workflow instance {instance_id} vanished after insert")
        return record, created

    async def _update(self, instance_id: str, **values: Any) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(WorkflowInstance).where(WorkflowInstance.id == instance_id).values(**values)
            )
            await session.commit()

    async def mark_running(self, instance_id: str, step_index: int, step_name: str | None) -> None:
        await self._update(
            instance_id,
            state=WorkflowState.RUNNING.value,
            step_index=step_index,
            current_step=step_name,
        )

    async def mark_complete(self, instance_id: str, output: Any) -> None:
        await self._update(
            instance_id,
            state=WorkflowState.COMPLETE.value,
            output_json=output,
            error=None,
            retryable=None,
        )

    async def mark_errored(self, instance_id: str, error: str, retryable: bool) -> None:
        await self._update(
            instance_id,
            state=WorkflowState.ERRORED.value,
            error=error,
            retryable=retryable,
        )

    async def get_step(self, instance_id: str, step_name: str) -> LedgerEntry | None:
        stmt = select(WorkflowStepRecord).where(
            WorkflowStepRecord.instance_id == instance_id,
            WorkflowStepRecord.step_name == step_name,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar()
        if row is None:
            return None
        return LedgerEntry(step_name=row.step_name, output=row.output_json, attempts=row.attempts)

    async def record_step(self, instance_id: str, step_name: str, output: Any, attempts: int) -> None:
        async with self._session_factory() as session:
            session.add(
                WorkflowStepRecord(
                    instance_id=instance_id,
                    step_name=step_name,
                    output_json=output,
                    attempts=attempts,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent re-run recorded the same step first; keep its output.
                await session.rollback()
                logger.warning("Step %s of %s was already recorded", step_name, instance_id)
