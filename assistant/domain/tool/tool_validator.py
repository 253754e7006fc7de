from typing import Any, Dict, List, Optional, Type
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from assistant.domain.models.agent_state import TaskPriority


class ToolParams(BaseModel):
    """Tool parameters arrive camelCased from the model"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True, extra="ignore")


class CreateTaskParams(ToolParams):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    due_date: Optional[int] = Field(None, description="Epoch seconds")
    priority: TaskPriority = TaskPriority.MEDIUM


class ListTasksParams(ToolParams):
    completed: Optional[bool] = None


class CompleteTaskParams(ToolParams):
    task_id: str = Field(min_length=1)


class SendEmailParams(ToolParams):
    to: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    subject: str = Field(min_length=1)
    text_body: str = Field(min_length=1)
    html_body: Optional[str] = None


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    params: Optional[BaseModel] = None


class ToolParameterValidator:
    @staticmethod
    def validate_tool_call(schema: Type[BaseModel], parameters: Any) -> ValidationResult:
        """Validate raw tool parameters against the tool's parameter model"""

        if parameters is None:
            parameters = {}
        if not isinstance(parameters, dict):
            return ValidationResult(False, ["params must be a JSON object"])

        try:
            return ValidationResult(True, [], schema.model_validate(parameters))
        except PydanticValidationError as e:
            return ValidationResult(False, [_describe(err) for err in e.errors()])


def _describe(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "params"
    return f"{location}: {error.get('msg', 'invalid value')}"
