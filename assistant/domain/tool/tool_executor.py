from typing import Dict, Any, Optional
from dataclasses import dataclass, field
import json
import re
import time

import structlog

from assistant.infrastructure.observability.logging import agent_logger
from .tool_registry import ToolContext, ToolRegistry, ToolResult
from .tool_validator import ToolParameterValidator

logger = structlog.get_logger(__name__)

_TOOL_CALL_BLOCK = re.compile(r"```json\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass
class ToolCall:
    name: str
    params: Dict[str, Any] = field(default_factory=dict)


def parse_tool_call(text: str) -> Optional[ToolCall]:
    """Extract the first fenced ```json {"tool": ..., "params": ...} block"""

    for match in _TOOL_CALL_BLOCK.finditer(text or ""):
        try:
            payload = json.loads(match.group(1))
        except json.JSONDecodeError:
            continue

        if isinstance(payload, dict) and isinstance(payload.get("tool"), str):
            params = payload.get("params")
            return ToolCall(name=payload["tool"], params=params if params is not None else {})

    return None


def format_tool_result(name: str, result: ToolResult) -> str:
    """Render a result as the ``[toolName] ...`` system message the model reads"""

    if not result.success:
        return f"[{name}] Error: {result.error or 'Tool failed'}"

    text = f"[{name}] {result.message or 'Done'}"
    if result.data is not None:
        text += "\n" + json.dumps(result.data, ensure_ascii=False)
    return text


class ToolExecutor:
    """Validates and runs model tool calls; failures become failed results"""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        start = time.perf_counter()
        result = await self._run(call, context)
        duration_ms = (time.perf_counter() - start) * 1000

        agent_logger.log_tool_execution(
            call.name,
            context.user_id,
            call.params if isinstance(call.params, dict) else {},
            output_data={"message": result.message} if result.success else None,
            duration_ms=duration_ms,
            success=result.success,
            error=result.error,
        )
        return result

    async def _run(self, call: ToolCall, context: ToolContext) -> ToolResult:
        tool = self.registry.get_tool(call.name)
        if tool is None:
            available = ", ".join(self.registry.get_available_tools())
            return ToolResult(success=False, error=f"Unknown tool: {call.name}. Available tools: {available}")

        validation = ToolParameterValidator.validate_tool_call(tool.parameters, call.params)
        if not validation.is_valid:
            return ToolResult(success=False, error="Invalid parameters: " + "; ".join(validation.errors))

        try:
            return await tool.execute(validation.params, context)
        except Exception as e:
            logger.exception("Tool execution failed", tool=call.name, user_id=context.user_id)
            return ToolResult(success=False, error=str(e) or "Tool execution failed")
