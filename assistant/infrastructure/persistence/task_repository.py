from typing import Dict, Any, List, Optional

from sqlalchemy import delete, select

from assistant.domain.models.agent_state import Task, TaskPriority, new_id, now_seconds
from .database import Database
from .tables import TaskRow

_UPDATABLE_FIELDS = ("title", "description", "due_date", "priority")


def _to_task(row: TaskRow) -> Task:
    return Task(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        due_date=row.due_date,
        completed=bool(row.completed),
        priority=row.priority or TaskPriority.MEDIUM.value,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


class TaskRepository:
    """Task CRUD scoped by owning user"""

    def __init__(self, database: Database):
        self.database = database

    async def create(
        self,
        user_id: str,
        title: str,
        description: Optional[str] = None,
        due_date: Optional[int] = None,
        priority: str = TaskPriority.MEDIUM.value,
    ) -> Task:
        task = Task(
            id=new_id(),
            user_id=user_id,
            title=title,
            description=description or None,
            due_date=due_date or None,
            priority=priority,
            created_at=now_seconds(),
        )

        async with self.database.session() as session:
            session.add(TaskRow(
                id=task.id,
                user_id=task.user_id,
                title=task.title,
                description=task.description,
                due_date=task.due_date,
                completed=False,
                priority=task.priority,
                created_at=task.created_at,
            ))

        return task

    async def get(self, user_id: str, task_id: str) -> Optional[Task]:
        async with self.database.session() as session:
            row = await self._get_row(session, user_id, task_id)
            return _to_task(row) if row else None

    async def list(self, user_id: str, completed: Optional[bool] = None) -> List[Task]:
        """List a user's tasks, newest first"""

        stmt = select(TaskRow).where(TaskRow.user_id == user_id)
        if completed is not None:
            stmt = stmt.where(TaskRow.completed == completed)
        stmt = stmt.order_by(TaskRow.created_at.desc(), TaskRow.id)

        async with self.database.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_task(row) for row in rows]

    async def update(self, user_id: str, task_id: str, updates: Dict[str, Any]) -> Optional[Task]:
        """Apply the provided field updates; returns None if the task is missing"""

        async with self.database.session() as session:
            row = await self._get_row(session, user_id, task_id)
            if row is None:
                return None

            for field in _UPDATABLE_FIELDS:
                if field in updates:
                    value = updates[field]
                    if field in ("description", "due_date"):
                        value = value or None
                    setattr(row, field, value)

            await session.flush()
            return _to_task(row)

    async def complete(self, user_id: str, task_id: str, completed_at: Optional[int] = None) -> Optional[Task]:
        async with self.database.session() as session:
            row = await self._get_row(session, user_id, task_id)
            if row is None:
                return None

            row.completed = True
            row.completed_at = completed_at if completed_at is not None else now_seconds()
            await session.flush()
            return _to_task(row)

    async def delete(self, user_id: str, task_id: str) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                delete(TaskRow).where(TaskRow.id == task_id, TaskRow.user_id == user_id)
            )
            return result.rowcount > 0

    async def delete_completed_before(self, user_id: str, cutoff: int) -> int:
        """Delete completed tasks whose completion is older than ``cutoff`` (epoch seconds)"""

        async with self.database.session() as session:
            result = await session.execute(
                delete(TaskRow).where(
                    TaskRow.user_id == user_id,
                    TaskRow.completed.is_(True),
                    TaskRow.completed_at < cutoff,
                )
            )
            return result.rowcount or 0

    @staticmethod
    async def _get_row(session, user_id: str, task_id: str) -> Optional[TaskRow]:
        stmt = select(TaskRow).where(TaskRow.id == task_id, TaskRow.user_id == user_id)
        return (await session.execute(stmt)).scalar_one_or_none()
