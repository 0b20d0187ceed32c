"""Tests for the langchain chat model adapter."""

from typing import Any, List, Optional

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.outputs import ChatResult

from conftest import UpstreamHTTPError
from support_agent.domain.errors import ChatEngineError, ErrorKind
from support_agent.domain.orchestration.core.generation import ChatModelProvider


class OverloadedChatModel(BaseChatModel):
    """Chat model whose upstream always answers 503"""

    @property
    def _llm_type(self) -> str:
        return "overloaded"

    def _generate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Any = None,
        **kwargs: Any,
    ) -> ChatResult:
        raise UpstreamHTTPError(503)


async def generate(provider, tools=None):
    return await provider.generate(
        model="test-model",
        messages=[HumanMessage(content="hi")],
        tools=tools or [],
        max_output_tokens=256,
        temperature=0.0,
    )


class TestChatModelProvider:
    @pytest.mark.asyncio
    async def test_returns_model_message(self):
        model = GenericFakeChatModel(messages=iter([AIMessage(content="hello there")]))

        response = await generate(ChatModelProvider(model))

        assert isinstance(response, AIMessage)
        assert response.content == "hello there"

    @pytest.mark.asyncio
    async def test_upstream_status_is_classified_retryable(self):
        with pytest.raises(ChatEngineError) as exc_info:
            await generate(ChatModelProvider(OverloadedChatModel()))

        assert exc_info.value.kind == ErrorKind.UPSTREAM_CALL_ERROR
        assert exc_info.value.retryable
        assert exc_info.value.details == {"status_code": 503}

    @pytest.mark.asyncio
    async def test_model_without_tool_support(self):
        tools = [{"type": "function", "function": {"name": "x", "description": "x", "parameters": {}}}]

        with pytest.raises(ChatEngineError) as exc_info:
            await generate(ChatModelProvider(OverloadedChatModel()), tools=tools)

        assert exc_info.value.kind == ErrorKind.INVALID_ARGUMENT
