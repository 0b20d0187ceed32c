from .base_tool import AgentTool
from .tool_registry import ToolRegistry
from .tool_validator import ToolValidator
from .tool_executor import ToolExecutor

__all__ = ["AgentTool", "ToolRegistry", "ToolValidator", "ToolExecutor"]
