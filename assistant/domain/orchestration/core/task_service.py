from typing import Dict, Any, List, Optional, Callable

import structlog

from assistant.domain.errors import NotFoundError, ValidationError
from assistant.domain.models.agent_state import Task, TaskPriority, now_seconds
from assistant.domain.models.workflow import (
    TaskSnapshot,
    WorkflowAction,
    WorkflowParams,
    WorkflowRun,
)
from assistant.domain.orchestration.workflow.scheduler import WorkflowScheduler
from assistant.domain.orchestration.workflow.task_workflow import REMINDER_LEAD_SECONDS
from assistant.infrastructure.persistence.task_repository import TaskRepository
from assistant.infrastructure.persistence.user_repository import UserRepository

logger = structlog.get_logger(__name__)

_PRIORITIES = {p.value for p in TaskPriority}


def _check_priority(priority: Optional[str]) -> None:
    if priority is not None and priority not in _PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}. Use low, medium or high")


def _check_due_date(due_date: Any) -> None:
    if due_date is not None and (isinstance(due_date, bool) or not isinstance(due_date, int)):
        raise ValidationError("dueDate must be an integer epoch timestamp in seconds")


class TaskService:
    """Task operations shared by the session protocol and the model tools"""

    def __init__(
        self,
        tasks: TaskRepository,
        users: UserRepository,
        scheduler: Optional[WorkflowScheduler] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.tasks = tasks
        self.users = users
        self.scheduler = scheduler
        self.clock = clock or now_seconds

    async def create_task(
        self,
        user_id: str,
        title: Optional[str],
        description: Optional[str] = None,
        due_date: Optional[int] = None,
        priority: Optional[str] = None,
    ) -> Task:
        """Create a task and schedule its reminder when it is due more than a day out"""

        if not title or not str(title).strip():
            raise ValidationError("title is required")
        _check_priority(priority)
        _check_due_date(due_date)

        await self.users.ensure_user(user_id)
        task = await self.tasks.create(
            user_id,
            title=title,
            description=description,
            due_date=due_date,
            priority=priority or TaskPriority.MEDIUM.value,
        )
        logger.info("Task created", user_id=user_id, task_id=task.id, due_date=task.due_date)

        if task.due_date:
            await self._schedule_reminder(task)

        return task

    async def list_tasks(self, user_id: str, completed: Optional[bool] = None) -> List[Task]:
        await self.users.ensure_user(user_id)
        return await self.tasks.list(user_id, completed=completed)

    async def complete_task(self, user_id: str, task_id: Optional[str]) -> Task:
        if not task_id:
            raise ValidationError("taskId is required")

        await self.users.ensure_user(user_id)
        task = await self.tasks.complete(user_id, task_id, completed_at=self.clock())
        if task is None:
            raise NotFoundError("Task not found")

        logger.info("Task completed", user_id=user_id, task_id=task_id)
        return task

    async def update_task(self, user_id: str, task_id: Optional[str], updates: Dict[str, Any]) -> Task:
        """Apply the provided fields; absent fields are left unchanged"""

        if not task_id:
            raise ValidationError("taskId is required")
        if "title" in updates and not (updates["title"] and str(updates["title"]).strip()):
            raise ValidationError("title cannot be empty")
        _check_priority(updates.get("priority"))
        _check_due_date(updates.get("due_date"))

        await self.users.ensure_user(user_id)
        task = await self.tasks.update(user_id, task_id, updates)
        if task is None:
            raise NotFoundError("Task not found")

        logger.info("Task updated", user_id=user_id, task_id=task_id, fields=sorted(updates))
        return task

    async def delete_task(self, user_id: str, task_id: Optional[str]) -> str:
        if not task_id:
            raise ValidationError("taskId is required")

        await self.users.ensure_user(user_id)
        if not await self.tasks.delete(user_id, task_id):
            raise NotFoundError("Task not found")

        logger.info("Task deleted", user_id=user_id, task_id=task_id)
        return task_id

    async def schedule_cleanup(self, user_id: str) -> WorkflowRun:
        """Enqueue removal of completed tasks older than thirty days"""

        if self.scheduler is None:
            raise ValidationError("Workflow scheduling is not available")

        return await self.scheduler.enqueue(WorkflowParams(
            user_id=user_id,
            task_id="*",
            action=WorkflowAction.CLEANUP.value,
        ))

    async def _schedule_reminder(self, task: Task) -> Optional[WorkflowRun]:
        if self.scheduler is None:
            return None

        reminder_at = task.due_date - REMINDER_LEAD_SECONDS
        if reminder_at <= self.clock():
            logger.info("Task due too soon for a reminder", task_id=task.id, due_date=task.due_date)
            return None

        params = WorkflowParams(
            user_id=task.user_id,
            task_id=task.id,
            action=WorkflowAction.REMINDER.value,
            due_date=task.due_date,
            task_details=TaskSnapshot(
                title=task.title,
                description=task.description,
                priority=task.priority,
            ),
        )

        # A failed enqueue never fails task creation
        try:
            run = await self.scheduler.enqueue(params)
        except Exception as e:
            logger.error("Failed to schedule reminder workflow", task_id=task.id, error=str(e))
            return None

        logger.info("Scheduled reminder workflow", run_id=run.id, task_id=task.id, reminder_at=reminder_at)
        return run
