from typing import Dict, Any, Optional
from pydantic import BaseModel, ValidationError

from support_agent.domain.errors import ChatEngineError, ErrorKind
from support_agent.domain.models.agent_state import (
    ToolResult, TextResult, MultiTextResult, StructuredResult
)
from .base_tool import AgentTool
from .tool_registry import ToolRegistry

RESULT_TYPES = (TextResult, MultiTextResult, StructuredResult)


class ToolValidator:
    """Validates tool lookups, inputs and results"""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def resolve(self, name: str) -> AgentTool:
        tool = self.registry.get(name)
        if tool is None:
            raise ChatEngineError.fatal(
                f"Model requested unknown tool '{name}'",
                ErrorKind.NO_SUCH_TOOL,
                tool=name,
                available=list(self.registry.tools.keys()),
            )
        return tool

    def validate_input(self, tool: AgentTool, args: Optional[Dict[str, Any]]) -> BaseModel:
        try:
            return tool.input_model.model_validate(args or {})
        except ValidationError as exc:
            raise ChatEngineError.fatal(
                f"Invalid input for tool '{tool.name}'",
                ErrorKind.INVALID_TOOL_INPUT,
                cause=exc,
                tool=tool.name,
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc

    def validate_result(self, tool: AgentTool, result: Any) -> ToolResult:
        """Accept a result variant; plain dicts are taken as structured data"""

        if isinstance(result, RESULT_TYPES):
            return result
        if isinstance(result, dict):
            return StructuredResult(data=result)
        raise TypeError(
            f"Tool '{tool.name}' returned {type(result).__name__}, expected a tool result variant"
        )
