from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from enum import Enum
import time
import uuid


def now_ms() -> int:
    """Current time in epoch milliseconds"""
    return int(time.time() * 1000)


def now_seconds() -> int:
    """Current time in epoch seconds"""
    return int(time.time())


def new_id() -> str:
    """Generate a unique identifier"""
    return str(uuid.uuid4())


class WireModel(BaseModel):
    """Base for models exchanged with clients and stored as JSON (camelCase on the wire)"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MessageRole(str, Enum):
    """Conversation roles"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TaskPriority(str, Enum):
    """Task priority levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Message(WireModel):
    """A single immutable conversation turn"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    metadata: Optional[Dict[str, Any]] = None


class Task(WireModel):
    """A user-owned task"""

    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    description: Optional[str] = None
    due_date: Optional[int] = Field(None, description="Epoch seconds")
    completed: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM
    created_at: int = Field(default_factory=now_seconds, description="Epoch seconds")
    completed_at: Optional[int] = Field(None, description="Epoch seconds")

    @model_validator(mode="after")
    def _completed_at_matches_flag(self) -> "Task":
        if self.completed and self.completed_at is None:
            raise ValueError("completed task requires completed_at")
        if not self.completed and self.completed_at is not None:
            raise ValueError("completed_at set on an incomplete task")
        return self


class Session(BaseModel):
    """Ephemeral binding of a live transport handle to a user"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    handle: Any = Field(exclude=True)
    user_id: str
    connected_at: int = Field(default_factory=now_ms)


class ActorState(WireModel):
    """Durable per-actor state blob"""

    user_id: str = ""
    conversation_history: List[Message] = Field(default_factory=list)
    active_web_sockets: int = 0
    last_activity: int = Field(default_factory=now_ms)
    version: int = 0

    def append_message(self, message: Message, limit: int) -> None:
        """Append to the cached working set, keeping at most ``limit`` messages"""
        self.conversation_history.append(message)
        if len(self.conversation_history) > limit:
            self.conversation_history = self.conversation_history[-limit:]

    def touch(self) -> None:
        self.last_activity = now_ms()


class ConversationContext(WireModel):
    """Bounded prompt context derived from history, never persisted"""

    messages: List[Message] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    total_tokens: int = 0
    truncated: bool = False


class User(WireModel):
    """Registered user profile"""

    id: str
    name: str
    timezone: str = "UTC"
    preferences: Optional[Dict[str, Any]] = None
    created_at: int = Field(default_factory=now_seconds)
    updated_at: int = Field(default_factory=now_seconds)
