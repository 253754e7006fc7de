from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel

from assistant.application.services import AssistantServices
from assistant.domain.context.context_ranker import ContextRanker
from assistant.domain.context.memory.runtime_memory import RuntimeMemory
from assistant.domain.errors import NotFoundError
from assistant.domain.models.agent_state import ActorState, new_id, now_ms

router = APIRouter()


def get_services(request: Request) -> AssistantServices:
    return request.app.state.services


class RegisterUserRequest(BaseModel):
    name: Optional[str] = None
    timezone: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None


@router.get("/health")
async def health_check(services: AssistantServices = Depends(get_services)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "activeActors": services.actor_host.active_actors,
        "openConnections": services.actor_host.open_handles,
        "activeWorkflows": services.scheduler.active_runs,
        "timestamp": now_ms(),
    }


@router.post("/api/users/register", status_code=status.HTTP_201_CREATED)
async def register_user(
    body: Optional[RegisterUserRequest] = None,
    services: AssistantServices = Depends(get_services),
):
    body = body or RegisterUserRequest()
    user = await services.users.register(body.name, body.timezone, body.preferences)
    return {
        "userId": user.id,
        "user": user.to_wire(),
        "websocketUrl": f"/ws?userId={user.id}",
    }


@router.get("/api/users/generate-id")
async def generate_user_id():
    user_id = new_id()
    return {"userId": user_id, "websocketUrl": f"/ws?userId={user_id}"}


@router.get("/api/user/{user_id}")
async def get_user(user_id: str, services: AssistantServices = Depends(get_services)):
    user = await services.users.get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user.to_wire()


@router.get("/api/user/{user_id}/tasks")
async def list_user_tasks(
    user_id: str,
    completed: Optional[bool] = Query(None),
    services: AssistantServices = Depends(get_services),
):
    tasks = await services.tasks.list(user_id, completed=completed)
    return {"tasks": [task.to_wire() for task in tasks], "count": len(tasks)}


@router.get("/api/user/{user_id}/conversations")
async def list_conversations(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    services: AssistantServices = Depends(get_services),
):
    messages = await services.conversation_log.load_history(user_id, limit=limit)
    return {"messages": [m.to_wire() for m in messages], "count": len(messages)}


@router.get("/api/agent/{user_id}/state")
async def get_agent_state(user_id: str, services: AssistantServices = Depends(get_services)):
    """Live actor state when active, otherwise the last persisted blob"""

    state = await services.actor_host.snapshot(user_id)
    if state is None:
        state = await services.state_manager.load(user_id)
    if state is None:
        state = ActorState()
    return state.to_wire()


@router.post("/api/user/{user_id}/tasks/cleanup", status_code=status.HTTP_202_ACCEPTED)
async def cleanup_tasks(user_id: str, services: AssistantServices = Depends(get_services)):
    run = await services.task_service.schedule_cleanup(user_id)
    return {"runId": run.id, "status": run.status}


@router.get("/api/workflows/{run_id}")
async def get_workflow(run_id: str, services: AssistantServices = Depends(get_services)):
    run = await services.workflow_store.get_run(run_id)
    if run is None:
        raise NotFoundError("Workflow run not found")
    return run.to_wire()


@router.get("/api/agent/{user_id}/insights")
async def get_agent_insights(
    user_id: str,
    hours: float = Query(24, gt=0),
    services: AssistantServices = Depends(get_services),
):
    """Topic summary, current intent and recent turns from the conversation log"""

    history = await services.conversation_log.load_history(user_id, limit=services.settings.history_limit)
    memory = RuntimeMemory()
    ranker = ContextRanker()
    return {
        "summary": ranker.summarize_conversation(history),
        "intent": ranker.extract_intent(history),
        "recentMessages": [m.to_wire() for m in memory.get_recent_messages(history)],
        "messagesInWindow": len(memory.get_messages_by_time_range(history, hours)),
    }
