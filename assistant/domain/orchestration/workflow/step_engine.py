"""Durable step execution for workflow runs.

A workflow handler is ordinary sequential code that wraps every unit of work
in ``step.do(name, fn)``. Each step's result is checkpointed before the next
step starts; when a run is resumed (after a sleep or a process restart) the
handler is replayed from the top and completed steps return their stored
result instead of executing again.

``step.sleep_until`` does not hold a coroutine: it suspends the run, which the
engine persists as ``sleeping`` with a wake time for the scheduler to pick up.
"""

from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple, Type
from dataclasses import dataclass
import asyncio

import structlog
from sqlalchemy.exc import OperationalError

from assistant.domain.errors import (
    FatalWorkflowError,
    StepRetriesExhaustedError,
    TransientBackendError,
)
from assistant.domain.models.agent_state import now_seconds
from assistant.domain.models.workflow import (
    WorkflowParams,
    WorkflowResult,
    WorkflowRun,
    WorkflowStatus,
)
from assistant.infrastructure.observability.logging import agent_logger
from assistant.infrastructure.persistence.workflow_store import WorkflowStore

logger = structlog.get_logger(__name__)


class WorkflowSuspended(Exception):
    """Raised inside a handler to park the run until ``wake_at``"""

    def __init__(self, step_name: str, wake_at: int):
        super().__init__(f"{step_name} sleeping until {wake_at}")
        self.step_name = step_name
        self.wake_at = wake_at


@dataclass
class RetryPolicy:
    """Per-step retry budget with exponential backoff"""
    max_attempts: int = 5
    backoff_seconds: float = 1.0
    backoff_factor: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientBackendError, OperationalError)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * (self.backoff_factor ** (attempt - 1))


class WorkflowHandler(Protocol):
    async def run(self, run_id: str, params: WorkflowParams, step: "WorkflowStep") -> WorkflowResult:
        ...


class WorkflowStep:
    """Checkpointing step API handed to a workflow handler"""

    def __init__(
        self,
        run_id: str,
        store: WorkflowStore,
        clock: Callable[[], int],
        retry_policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.run_id = run_id
        self.store = store
        self.clock = clock
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def do(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` once, durably; replays return the checkpointed result"""

        record = await self.store.get_step(self.run_id, name)
        if record is not None:
            logger.debug("Replaying checkpointed step", run_id=self.run_id, step=name)
            return record.result

        attempt = 1
        while True:
            try:
                result = await fn()
                break
            except FatalWorkflowError:
                raise
            except self.retry_policy.retry_on as e:
                if attempt >= self.retry_policy.max_attempts:
                    logger.error("Step retries exhausted", run_id=self.run_id, step=name, attempts=attempt, error=str(e))
                    raise StepRetriesExhaustedError(f"Step {name} failed after {attempt} attempts: {e}") from e

                delay = self.retry_policy.delay_for(attempt)
                logger.warning("Step failed, retrying", run_id=self.run_id, step=name, attempt=attempt, delay=delay, error=str(e))
                await self._sleep(delay)
                attempt += 1

        record = await self.store.save_step(self.run_id, name, result)
        logger.info("Step completed", run_id=self.run_id, step=name, attempts=attempt)
        return record.result

    async def sleep_until(self, name: str, wake_at: int) -> None:
        """Suspend the run until ``wake_at`` (epoch seconds) unless it has passed"""

        if await self.store.get_step(self.run_id, name) is not None:
            return

        now = self.clock()
        if now >= wake_at:
            await self.store.save_step(self.run_id, name, {"wokeAt": now})
            logger.info("Woke up", run_id=self.run_id, step=name, late_by=now - wake_at)
            return

        raise WorkflowSuspended(name, wake_at)


class StepWorkflowEngine:
    """Drives a run through its handler, persisting status transitions"""

    def __init__(
        self,
        store: WorkflowStore,
        handler: WorkflowHandler,
        clock: Optional[Callable[[], int]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.handler = handler
        self.clock = clock or now_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def execute(self, run_id: str) -> WorkflowRun:
        """Advance a run as far as it can go; returns the updated run record"""

        run = await self.store.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown workflow run: {run_id}")

        if WorkflowStatus(run.status).is_terminal:
            return run

        params = run.params
        await self._transition(run_id, run.status, WorkflowStatus.RUNNING, params.action)

        step = WorkflowStep(run_id, self.store, self.clock, self.retry_policy, self._sleep)

        try:
            result = await self.handler.run(run_id, params, step)
        except WorkflowSuspended as suspended:
            await self._transition(
                run_id, WorkflowStatus.RUNNING, WorkflowStatus.SLEEPING, params.action,
                wake_at=suspended.wake_at,
            )
            return await self.store.get_run(run_id)
        except FatalWorkflowError as e:
            logger.warning("Workflow failed", run_id=run_id, action=params.action, code=e.code, error=e.message)
            result = WorkflowResult(success=False, message=e.message, error=e.code, task_id=params.task_id)
        except Exception as e:
            logger.exception("Workflow crashed", run_id=run_id, action=params.action)
            result = WorkflowResult(success=False, message=str(e), error="INTERNAL_ERROR", task_id=params.task_id)

        final_status = WorkflowStatus.COMPLETED if result.success else WorkflowStatus.FAILED
        await self._transition(run_id, WorkflowStatus.RUNNING, final_status, params.action, result=result)
        return await self.store.get_run(run_id)

    async def _transition(
        self,
        run_id: str,
        from_status: str,
        to_status: WorkflowStatus,
        action: str,
        wake_at: Optional[int] = None,
        result: Optional[WorkflowResult] = None,
    ) -> None:
        await self.store.set_status(run_id, to_status, wake_at=wake_at, result=result)
        agent_logger.log_workflow_transition(
            run_id,
            WorkflowStatus(from_status).value,
            to_status.value,
            action=action,
            details={"wake_at": wake_at} if wake_at is not None else None,
        )
