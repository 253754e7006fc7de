from typing import Dict, List, Any, Optional, Type, Callable, Awaitable, TYPE_CHECKING
from dataclasses import dataclass

from pydantic import BaseModel

from assistant.domain.models.agent_state import WireModel
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from assistant.domain.orchestration.core.task_service import TaskService
    from .email_tool import PostmarkClient


class ToolResult(WireModel):
    """Outcome of a single tool invocation"""
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ToolContext:
    """Per-call collaborators handed to a tool"""
    user_id: str
    task_service: "TaskService"
    rate_limiter: RateLimiter
    email_client: Optional["PostmarkClient"] = None
    email_rate_limit_calls: int = 10
    email_rate_limit_window_ms: int = 60 * 60 * 1000


ToolHandler = Callable[[BaseModel, ToolContext], Awaitable[ToolResult]]


@dataclass
class ToolDefinition:
    """A model-invokable tool"""
    name: str
    description: str
    parameters: Type[BaseModel]
    execute: ToolHandler
    category: str = "general"


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self):
        self.tools: Dict[str, ToolDefinition] = {}
        self.tool_categories: Dict[str, List[str]] = {}

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool"""

        self.tools[tool.name] = tool
        self.tool_categories.setdefault(tool.category, [])
        if tool.name not in self.tool_categories[tool.category]:
            self.tool_categories[tool.category].append(tool.name)

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self.tools.get(name)

    def get_available_tools(self) -> List[str]:
        return list(self.tools)

    def get_tools_by_category(self, category: str) -> List[ToolDefinition]:
        """Get tools by category"""

        return [self.tools[name] for name in self.tool_categories.get(category, []) if name in self.tools]
