from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from assistant.domain.errors import FatalWorkflowError
from assistant.domain.models.agent_state import Message, MessageRole, now_seconds
from assistant.domain.models.workflow import (
    ReminderStep,
    WorkflowAction,
    WorkflowParams,
    WorkflowResult,
)
from assistant.infrastructure.persistence.conversation_log import ConversationLog
from assistant.infrastructure.persistence.task_repository import TaskRepository
from .step_engine import WorkflowStep

logger = structlog.get_logger(__name__)

REMINDER_LEAD_SECONDS = 24 * 60 * 60
CLEANUP_AGE_SECONDS = 30 * 24 * 60 * 60

ReminderNotifier = Callable[[str, Message], Awaitable[None]]


def reminder_message_id(run_id: str) -> str:
    """Reminder ids derive from the run so a replayed send is a no-op"""
    return f"reminder-{run_id}"


class TaskWorkflow:
    """Background task workflows: reminder, cleanup, decompose and schedule"""

    def __init__(
        self,
        tasks: TaskRepository,
        conversation_log: ConversationLog,
        clock: Optional[Callable[[], int]] = None,
        notifier: Optional[ReminderNotifier] = None,
    ):
        self.tasks = tasks
        self.conversation_log = conversation_log
        self.clock = clock or now_seconds
        self.notifier = notifier

    async def run(self, run_id: str, params: WorkflowParams, step: WorkflowStep) -> WorkflowResult:
        logger.info("Starting workflow", run_id=run_id, action=params.action, task_id=params.task_id, user_id=params.user_id)

        if params.action == WorkflowAction.REMINDER:
            return await self._reminder(run_id, params, step)
        if params.action == WorkflowAction.DECOMPOSE:
            return await self._decompose(params, step)
        if params.action == WorkflowAction.SCHEDULE:
            return await self._schedule(params, step)
        if params.action == WorkflowAction.CLEANUP:
            return await self._cleanup(params, step)

        logger.error("Unknown workflow action", run_id=run_id, action=params.action)
        return WorkflowResult(
            success=False,
            message=f"Unknown workflow action: {params.action}",
            error="INVALID_ACTION",
        )

    async def _reminder(self, run_id: str, params: WorkflowParams, step: WorkflowStep) -> WorkflowResult:
        """Verify, compute the deadline, sleep, recheck, then write the reminder"""

        async def verify() -> Dict[str, Any]:
            task = await self.tasks.get(params.user_id, params.task_id)
            if task is None:
                raise FatalWorkflowError("Task not found", code="TASK_NOT_FOUND")
            return {
                "title": task.title,
                "priority": task.priority,
                "dueDate": task.due_date,
                "completed": task.completed,
            }

        task = await step.do(ReminderStep.VERIFY.value, verify)

        if task["completed"]:
            logger.info("Task already completed, skipping reminder", run_id=run_id, task_id=params.task_id)
            return WorkflowResult(
                success=True,
                message="Task already completed, reminder skipped",
                reminder_sent=False,
                task_id=params.task_id,
            )

        async def compute_deadline() -> Dict[str, Any]:
            due_date = params.due_date or task["dueDate"]
            if not due_date:
                raise FatalWorkflowError("No due date set for task", code="NO_DUE_DATE")

            reminder_at = due_date - REMINDER_LEAD_SECONDS
            now = self.clock()
            return {
                "reminderTimestamp": reminder_at,
                "dueDate": due_date,
                "shouldSendNow": reminder_at <= now,
                "timeUntilReminder": max(0, reminder_at - now),
            }

        deadline = await step.do(ReminderStep.COMPUTE_DEADLINE.value, compute_deadline)

        if not deadline["shouldSendNow"] and deadline["timeUntilReminder"] > 0:
            await step.sleep_until(ReminderStep.SLEEP.value, deadline["reminderTimestamp"])

        async def recheck() -> bool:
            current = await self.tasks.get(params.user_id, params.task_id)
            return current is not None and not current.completed

        still_open = await step.do(ReminderStep.RECHECK.value, recheck)

        if not still_open:
            return self._closed_before_reminder(run_id, params)

        title = params.task_details.title if params.task_details else task["title"]
        priority = (params.task_details.priority if params.task_details else None) or task["priority"]
        reminder = Message(
            id=reminder_message_id(run_id),
            role=MessageRole.SYSTEM,
            content=f'Reminder: Task "{title}" is due in 24 hours (Priority: {priority})',
            timestamp=self.clock() * 1000,
            metadata={"type": "task_reminder", "taskId": params.task_id},
        )

        async def send() -> Dict[str, Any]:
            # The recheck checkpoint may be stale after a crash, so read live state again
            current = await self.tasks.get(params.user_id, params.task_id)
            if current is None or current.completed:
                return {"messageId": reminder.id, "written": False, "skipped": True}
            written = await self.conversation_log.append(params.user_id, reminder)
            return {"messageId": reminder.id, "written": written}

        sent = await step.do(ReminderStep.SEND.value, send)

        if sent.get("skipped"):
            return self._closed_before_reminder(run_id, params)

        if sent["written"] and self.notifier is not None:
            await self._notify(params.user_id, reminder)

        return WorkflowResult(
            success=True,
            message=f"Reminder sent for task: {title}",
            reminder_sent=True,
            scheduled_for=deadline["reminderTimestamp"],
            task_id=params.task_id,
            data={"taskTitle": title, "dueDate": deadline["dueDate"]},
        )

    def _closed_before_reminder(self, run_id: str, params: WorkflowParams) -> WorkflowResult:
        logger.info("Task completed or deleted before reminder time", run_id=run_id, task_id=params.task_id)
        return WorkflowResult(
            success=True,
            message="Task completed or deleted before reminder time",
            reminder_sent=False,
            task_id=params.task_id,
        )

    async def _cleanup(self, params: WorkflowParams, step: WorkflowStep) -> WorkflowResult:
        async def delete_old() -> int:
            cutoff = self.clock() - CLEANUP_AGE_SECONDS
            return await self.tasks.delete_completed_before(params.user_id, cutoff)

        deleted = await step.do("cleanup-old-tasks", delete_old)
        logger.info("Cleaned up old completed tasks", user_id=params.user_id, deleted=deleted)

        return WorkflowResult(
            success=True,
            message=f"Cleaned up {deleted} old completed tasks",
            data={"deletedCount": deleted},
        )

    async def _decompose(self, params: WorkflowParams, step: WorkflowStep) -> WorkflowResult:
        async def decompose() -> Dict[str, Any]:
            return {"subtasksCreated": 0, "message": "Task decomposition not yet implemented"}

        outcome = await step.do("decompose-task", decompose)
        return WorkflowResult(success=True, message=outcome["message"], data=outcome, task_id=params.task_id)

    async def _schedule(self, params: WorkflowParams, step: WorkflowStep) -> WorkflowResult:
        async def schedule() -> Dict[str, Any]:
            return {"scheduled": False, "message": "Scheduled execution not yet implemented"}

        outcome = await step.do("schedule-task", schedule)
        return WorkflowResult(success=True, message=outcome["message"], data=outcome, task_id=params.task_id)

    async def _notify(self, user_id: str, reminder: Message) -> None:
        # Live delivery is best-effort; the durable log already holds the reminder
        try:
            await self.notifier(user_id, reminder)
        except Exception as e:
            logger.warning("Live reminder delivery failed", user_id=user_id, error=str(e))
