from typing import Dict, Any, Optional, List, Literal, Type
from pydantic import ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from enum import Enum

from assistant.domain.errors import InvalidMessageError, ValidationError
from assistant.domain.models.agent_state import WireModel, now_ms


class EventType(str, Enum):
    """Session protocol event types"""
    # inbound
    CHAT = "chat"
    CREATE_TASK = "create_task"
    LIST_TASKS = "list_tasks"
    COMPLETE_TASK = "complete_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    PING = "ping"
    # outbound
    CONNECTED = "connected"
    CHAT_RESPONSE = "chat_response"
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    TASK_DELETED = "task_deleted"
    TASKS_LIST = "tasks_list"
    PONG = "pong"
    ERROR = "error"


class InboundEvent(WireModel):
    """Base for client frames; unknown extra keys are ignored"""

    model_config = ConfigDict(extra="ignore")

    type: str


class ChatMessage(InboundEvent):
    type: Literal["chat"] = "chat"
    content: Optional[str] = None


class CreateTaskRequest(InboundEvent):
    type: Literal["create_task"] = "create_task"
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[int] = None
    priority: Optional[str] = None


class ListTasksRequest(InboundEvent):
    type: Literal["list_tasks"] = "list_tasks"
    completed: Optional[bool] = None


class CompleteTaskRequest(InboundEvent):
    type: Literal["complete_task"] = "complete_task"
    task_id: Optional[str] = None


class UpdateTaskRequest(InboundEvent):
    type: Literal["update_task"] = "update_task"
    task_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[int] = None
    priority: Optional[str] = None

    def updates(self) -> Dict[str, Any]:
        """Only the fields the client actually sent"""
        return {
            name: getattr(self, name)
            for name in ("title", "description", "due_date", "priority")
            if name in self.model_fields_set
        }


class DeleteTaskRequest(InboundEvent):
    type: Literal["delete_task"] = "delete_task"
    task_id: Optional[str] = None


class PingMessage(InboundEvent):
    type: Literal["ping"] = "ping"


INBOUND_EVENTS: Dict[str, Type[InboundEvent]] = {
    EventType.CHAT.value: ChatMessage,
    EventType.CREATE_TASK.value: CreateTaskRequest,
    EventType.LIST_TASKS.value: ListTasksRequest,
    EventType.COMPLETE_TASK.value: CompleteTaskRequest,
    EventType.UPDATE_TASK.value: UpdateTaskRequest,
    EventType.DELETE_TASK.value: DeleteTaskRequest,
    EventType.PING.value: PingMessage,
}


def parse_inbound(data: Any) -> InboundEvent:
    """Turn a decoded client frame into its typed event"""

    if not isinstance(data, dict):
        raise InvalidMessageError("Invalid message format")

    event_type = data.get("type")
    model = INBOUND_EVENTS.get(event_type) if isinstance(event_type, str) else None
    if model is None:
        raise InvalidMessageError(f"Unknown message type: {event_type}")

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"{field}: {first.get('msg', 'invalid value')}")


class OutboundEvent(WireModel):
    """Base for server frames; timestamps are epoch milliseconds"""
    type: str
    timestamp: int = Field(default_factory=now_ms)


class ConnectedEvent(OutboundEvent):
    type: Literal["connected"] = "connected"
    user_id: str
    message: str = "Connected to Personal Assistant"


class ChatResponseEvent(OutboundEvent):
    type: Literal["chat_response"] = "chat_response"
    content: str


class TaskEvent(OutboundEvent):
    """task_created, task_updated and task_completed share one shape"""
    type: Literal["task_created", "task_updated", "task_completed"]
    task: Dict[str, Any]


class TaskDeletedEvent(OutboundEvent):
    type: Literal["task_deleted"] = "task_deleted"
    task_id: str


class TasksListEvent(OutboundEvent):
    type: Literal["tasks_list"] = "tasks_list"
    tasks: List[Dict[str, Any]]
    count: int


class PongEvent(OutboundEvent):
    type: Literal["pong"] = "pong"


class ErrorEvent(OutboundEvent):
    type: Literal["error"] = "error"
    error: str
    code: str
    details: Optional[str] = None
