from typing import Dict, List, Any, Optional, Iterable

from .base_tool import AgentTool


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self, tools: Optional[Iterable[AgentTool]] = None):
        self.tools: Dict[str, AgentTool] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: AgentTool):
        """Register a new tool, replacing any tool with the same name"""

        self.tools[tool.name] = tool

    def unregister_tool(self, name: str) -> bool:
        return self.tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[AgentTool]:
        return self.tools.get(name)

    def descriptions(self) -> Dict[str, str]:
        """Tool name to description, in registration order"""

        return {name: tool.description for name, tool in self.tools.items()}

    def provider_schemas(self) -> List[Dict[str, Any]]:
        return [tool.provider_schema() for tool in self.tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        return len(self.tools)
