from typing import Any, List, Optional
import json

from sqlalchemy import select

from assistant.domain.models.agent_state import new_id, now_seconds
from assistant.domain.models.workflow import (
    StepRecord,
    WorkflowParams,
    WorkflowResult,
    WorkflowRun,
    WorkflowStatus,
)
from .database import Database
from .tables import WorkflowRunRow, WorkflowStepRow

_RESUMABLE = (
    WorkflowStatus.PENDING.value,
    WorkflowStatus.RUNNING.value,
    WorkflowStatus.SLEEPING.value,
)


def _to_run(row: WorkflowRunRow) -> WorkflowRun:
    return WorkflowRun(
        id=row.id,
        params=WorkflowParams.model_validate_json(row.params),
        status=row.status,
        wake_at=row.wake_at,
        result=WorkflowResult.model_validate_json(row.result) if row.result else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class WorkflowStore:
    """Durable workflow runs and their step checkpoints"""

    def __init__(self, database: Database):
        self.database = database

    async def create_run(self, params: WorkflowParams) -> WorkflowRun:
        now = now_seconds()
        run = WorkflowRun(id=new_id(), params=params, created_at=now, updated_at=now)

        async with self.database.session() as session:
            session.add(WorkflowRunRow(
                id=run.id,
                user_id=params.user_id,
                task_id=params.task_id,
                action=params.action,
                params=params.model_dump_json(by_alias=True),
                status=run.status,
                created_at=now,
                updated_at=now,
            ))

        return run

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        async with self.database.session() as session:
            row = await session.get(WorkflowRunRow, run_id)
            return _to_run(row) if row else None

    async def list_resumable(self) -> List[WorkflowRun]:
        """Runs that have not reached a terminal status"""

        stmt = (
            select(WorkflowRunRow)
            .where(WorkflowRunRow.status.in_(_RESUMABLE))
            .order_by(WorkflowRunRow.created_at)
        )
        async with self.database.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_run(row) for row in rows]

    async def set_status(
        self,
        run_id: str,
        status: WorkflowStatus,
        wake_at: Optional[int] = None,
        result: Optional[WorkflowResult] = None,
    ) -> None:
        async with self.database.session() as session:
            row = await session.get(WorkflowRunRow, run_id)
            if row is None:
                raise KeyError(run_id)

            row.status = WorkflowStatus(status).value
            row.wake_at = wake_at
            if result is not None:
                row.result = result.model_dump_json(by_alias=True, exclude_none=True)
            row.updated_at = now_seconds()

    async def get_step(self, run_id: str, name: str) -> Optional[StepRecord]:
        async with self.database.session() as session:
            row = await session.get(WorkflowStepRow, (run_id, name))
            if row is None:
                return None
            return StepRecord(
                run_id=row.run_id,
                name=row.name,
                result=json.loads(row.result) if row.result is not None else None,
                completed_at=row.completed_at,
            )

    async def save_step(self, run_id: str, name: str, result: Any) -> StepRecord:
        """Checkpoint a completed step; an existing checkpoint is kept as-is"""

        record = StepRecord(run_id=run_id, name=name, result=result)

        async with self.database.session() as session:
            existing = await session.get(WorkflowStepRow, (run_id, name))
            if existing is not None:
                return StepRecord(
                    run_id=existing.run_id,
                    name=existing.name,
                    result=json.loads(existing.result) if existing.result is not None else None,
                    completed_at=existing.completed_at,
                )

            session.add(WorkflowStepRow(
                run_id=run_id,
                name=name,
                result=json.dumps(result),
                completed_at=record.completed_at,
            ))

        return record

    async def list_steps(self, run_id: str) -> List[StepRecord]:
        stmt = (
            select(WorkflowStepRow)
            .where(WorkflowStepRow.run_id == run_id)
            .order_by(WorkflowStepRow.completed_at, WorkflowStepRow.name)
        )
        async with self.database.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                StepRecord(
                    run_id=row.run_id,
                    name=row.name,
                    result=json.loads(row.result) if row.result is not None else None,
                    completed_at=row.completed_at,
                )
                for row in rows
            ]
