from typing import Any, Dict, List, Protocol, runtime_checkable
import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage

from support_agent.domain.errors import ChatEngineError, ErrorKind, classify_provider_exception

logger = structlog.get_logger(__name__)


@runtime_checkable
class GenerationProvider(Protocol):
    """One generation step: the model answers or requests tool calls"""

    async def generate(
        self,
        *,
        model: str,
        messages: List[BaseMessage],
        tools: List[Dict[str, Any]],
        max_output_tokens: int,
        temperature: float,
    ) -> AIMessage: ...


class ChatModelProvider:
    """Generation provider backed by a langchain chat model"""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def generate(
        self,
        *,
        model: str,
        messages: List[BaseMessage],
        tools: List[Dict[str, Any]],
        max_output_tokens: int,
        temperature: float,
    ) -> AIMessage:
        try:
            runnable = self.chat_model.bind_tools(tools) if tools else self.chat_model
        except NotImplementedError as exc:
            raise ChatEngineError.fatal(
                f"{type(self.chat_model).__name__} does not support tool calling",
                ErrorKind.INVALID_ARGUMENT,
                cause=exc,
            ) from exc

        try:
            response = await runnable.ainvoke(
                messages,
                max_tokens=max_output_tokens,
                temperature=temperature,
            )
        except Exception as exc:
            error = classify_provider_exception(exc)
            logger.warning(
                "Generation call failed",
                model=model,
                code=error.code,
                retryable=error.retryable
            )
            raise error from exc

        if not isinstance(response, AIMessage):
            raise ChatEngineError.fatal(
                f"Provider returned {type(response).__name__}, expected AIMessage",
                ErrorKind.TYPE_VALIDATION_ERROR,
            )
        return response
