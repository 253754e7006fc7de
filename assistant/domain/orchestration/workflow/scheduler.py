from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio

import structlog

from assistant.domain.models.agent_state import now_seconds
from assistant.domain.models.workflow import WorkflowParams, WorkflowRun, WorkflowStatus
from assistant.infrastructure.persistence.workflow_store import WorkflowStore
from .step_engine import StepWorkflowEngine

logger = structlog.get_logger(__name__)


class WorkflowScheduler:
    """Runs workflow instances in the background, independent of any connection

    Sleeping runs are woken by an asyncio timer; nothing blocks the event
    loop, so actors keep serving traffic while reminders wait.
    """

    def __init__(
        self,
        engine: StepWorkflowEngine,
        store: WorkflowStore,
        clock: Optional[Callable[[], int]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.engine = engine
        self.store = store
        self.clock = clock or now_seconds
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}

    async def enqueue(self, params: WorkflowParams) -> WorkflowRun:
        """Persist a new run and start driving it"""

        run = await self.store.create_run(params)
        logger.info("Workflow enqueued", run_id=run.id, action=params.action, task_id=params.task_id)
        self._spawn(run.id, delay=0)
        return run

    async def start(self) -> int:
        """Resume every non-terminal run found in the store"""

        runs = await self.store.list_resumable()
        for run in runs:
            delay = 0
            if run.status == WorkflowStatus.SLEEPING and run.wake_at is not None:
                delay = max(0, run.wake_at - self.clock())
            self._spawn(run.id, delay)

        logger.info("Workflow scheduler started", resumed=len(runs))
        return len(runs)

    async def stop(self) -> None:
        """Cancel in-flight drivers; runs resume from their checkpoints on next start"""

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def wait_for(self, run_id: str) -> Optional[WorkflowRun]:
        """Wait until the driver for ``run_id`` finishes"""

        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.store.get_run(run_id)

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    def _spawn(self, run_id: str, delay: float) -> None:
        if run_id in self._tasks:
            return

        task = asyncio.create_task(self._drive(run_id, delay), name=f"workflow-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda t: self._on_done(run_id, t))

    def _on_done(self, run_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Workflow driver crashed", run_id=run_id, error=str(error))

    async def _drive(self, run_id: str, delay: float) -> WorkflowRun:
        with structlog.contextvars.bound_contextvars(run_id=run_id):
            while True:
                if delay > 0:
                    await self._sleep(delay)

                run = await self.engine.execute(run_id)
                if run.status != WorkflowStatus.SLEEPING:
                    return run

                delay = max(0, (run.wake_at or 0) - self.clock())
