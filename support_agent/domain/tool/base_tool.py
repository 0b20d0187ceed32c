from abc import ABC, abstractmethod
from typing import Dict, Any, Type, ClassVar
from pydantic import BaseModel

from support_agent.domain.errors import ChatEngineError, ErrorKind
from support_agent.domain.models.agent_state import ExecutionContext, ToolResult


class AgentTool(ABC):
    """Base class for tools the model may call

    Subclasses declare ``name``, ``description`` and a pydantic
    ``input_model``. Identity comes only from the execution context, never
    from fields of the model-supplied input.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    input_model: ClassVar[Type[BaseModel]]

    @abstractmethod
    async def execute(self, tool_input: BaseModel, context: ExecutionContext) -> ToolResult:
        """Run the tool and return a TextResult, MultiTextResult or StructuredResult"""
        pass

    def require_user(self, context: ExecutionContext) -> str:
        """Return the authenticated user id or refuse to act"""

        user_id = (context.user_id or "").strip() if context is not None else ""
        if not user_id:
            raise ChatEngineError.fatal(
                f"Tool {self.name} called without an authenticated user",
                ErrorKind.INVALID_ARGUMENT,
                tool=self.name,
            )
        return user_id

    def provider_schema(self) -> Dict[str, Any]:
        """OpenAI-style function declaration"""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_model.model_json_schema(),
            },
        }
