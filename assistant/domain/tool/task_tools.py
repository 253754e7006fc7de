from assistant.domain.errors import AssistantError
from .email_tool import SEND_EMAIL_TOOL
from .tool_registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from .tool_validator import CompleteTaskParams, CreateTaskParams, ListTasksParams


async def create_task(params: CreateTaskParams, context: ToolContext) -> ToolResult:
    try:
        task = await context.task_service.create_task(
            context.user_id,
            params.title,
            description=params.description,
            due_date=params.due_date,
            priority=params.priority,
        )
    except AssistantError as e:
        return ToolResult(success=False, error=e.message)

    return ToolResult(success=True, data=task.to_wire(), message=f"Task created: {task.title}")


async def list_tasks(params: ListTasksParams, context: ToolContext) -> ToolResult:
    tasks = await context.task_service.list_tasks(context.user_id, completed=params.completed)
    return ToolResult(
        success=True,
        data=[task.to_wire() for task in tasks],
        message=f"Found {len(tasks)} tasks",
    )


async def complete_task(params: CompleteTaskParams, context: ToolContext) -> ToolResult:
    try:
        task = await context.task_service.complete_task(context.user_id, params.task_id)
    except AssistantError as e:
        return ToolResult(success=False, error=e.message)

    return ToolResult(success=True, data=task.to_wire(), message=f"Task completed: {task.title}")


CREATE_TASK_TOOL = ToolDefinition(
    name="createTask",
    description="Create a task with optional description, due date and priority",
    parameters=CreateTaskParams,
    execute=create_task,
    category="tasks",
)

LIST_TASKS_TOOL = ToolDefinition(
    name="listTasks",
    description="List the user's tasks, optionally filtered by completion",
    parameters=ListTasksParams,
    execute=list_tasks,
    category="tasks",
)

COMPLETE_TASK_TOOL = ToolDefinition(
    name="completeTask",
    description="Mark a task as completed",
    parameters=CompleteTaskParams,
    execute=complete_task,
    category="tasks",
)


def create_default_registry() -> ToolRegistry:
    """Registry with the task tools and the email tool"""

    registry = ToolRegistry()
    for tool in (CREATE_TASK_TOOL, LIST_TASKS_TOOL, COMPLETE_TASK_TOOL, SEND_EMAIL_TOOL):
        registry.register_tool(tool)
    return registry
