from typing import Dict, Any, Optional
from pydantic import Field
from enum import Enum

from .agent_state import WireModel, TaskPriority, now_seconds


class WorkflowAction(str, Enum):
    """Actions a task workflow run can perform"""
    REMINDER = "reminder"
    DECOMPOSE = "decompose"
    SCHEDULE = "schedule"
    CLEANUP = "cleanup"


class WorkflowStatus(str, Enum):
    """Workflow run lifecycle

    pending -> running -> completed/failed
    running -> sleeping -> running (when the wake time arrives)
    """
    PENDING = "pending"
    RUNNING = "running"
    SLEEPING = "sleeping"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class ReminderStep(str, Enum):
    """Named, ordered steps of the reminder workflow"""
    VERIFY = "verify-task"
    COMPUTE_DEADLINE = "calculate-reminder-time"
    SLEEP = "wait-for-reminder-time"
    RECHECK = "recheck-task-status"
    SEND = "send-reminder"


class TaskSnapshot(WireModel):
    """Task details captured when a run is enqueued"""
    title: str
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None


class WorkflowParams(WireModel):
    """Input of a workflow run

    ``action`` is kept as a plain string so that unknown values can be
    persisted and reported as a terminal failure instead of being rejected
    at enqueue time.
    """
    user_id: str
    task_id: str
    action: str
    due_date: Optional[int] = None
    task_details: Optional[TaskSnapshot] = None


class WorkflowResult(WireModel):
    """Terminal outcome of a workflow run"""
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    reminder_sent: Optional[bool] = None
    scheduled_for: Optional[int] = None
    task_id: Optional[str] = None


class WorkflowRun(WireModel):
    """Persisted workflow run record"""
    id: str
    params: WorkflowParams
    status: WorkflowStatus = WorkflowStatus.PENDING
    wake_at: Optional[int] = Field(None, description="Epoch seconds at which a sleeping run resumes")
    result: Optional[WorkflowResult] = None
    created_at: int = Field(default_factory=now_seconds)
    updated_at: int = Field(default_factory=now_seconds)


class StepRecord(WireModel):
    """Durable checkpoint of a completed step"""
    run_id: str
    name: str
    result: Any = None
    completed_at: int = Field(default_factory=now_seconds)
