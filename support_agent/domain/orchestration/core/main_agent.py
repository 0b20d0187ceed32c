from typing import TypedDict, List, Dict, Any, Optional, Iterable, Union, Callable, Awaitable
from dataclasses import dataclass
from datetime import datetime, timezone
import asyncio
import json
import time
import uuid

import structlog
from langgraph.graph import StateGraph, END
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt, wait_exponential

from support_agent.domain.context.context_assembler import ContextAssembler, SessionContext
from support_agent.domain.context.history_reconstructor import HistoryReconstructor, with_location
from support_agent.domain.context.memory.cache_memory_store import ProfileDirectory
from support_agent.domain.context.memory.runtime_memory import MessageLog
from support_agent.domain.context.rag_retriever import ConversationIndexer, RagRetriever
from support_agent.domain.context.state.keyed_lock import KeyedLock
from support_agent.domain.errors import ChatEngineError, ErrorKind, classify_provider_exception
from support_agent.domain.models.agent_state import (
    AIResponse, ConversationContext, Direction, ExecutionContext, MultiTextResult,
    Profile, StoredMessage, TextResult, ToolCallRecord, ToolResult, ToolResultRecord
)
from support_agent.domain.tool.base_tool import AgentTool
from support_agent.domain.tool.tool_executor import ToolExecutor
from support_agent.domain.tool.tool_registry import ToolRegistry
from support_agent.infrastructure.config.settings import AgentSettings
from support_agent.infrastructure.observability.logging import MetricsCollector
from .generation import GenerationProvider

logger = structlog.get_logger(__name__)


class ToolLoopState(TypedDict):
    """State for the generate/tool loop of one attempt"""
    messages: List[BaseMessage]
    pending_calls: List[ToolCallRecord]
    tool_calls: List[ToolCallRecord]
    tool_results: List[ToolResultRecord]
    reply_results: List[ToolResult]
    steps: List[Dict[str, Any]]
    step_count: int
    tokens_used: int
    final_text: str


@dataclass
class _TurnRun:
    """Per-call collaborators handed to graph nodes through the run config"""
    executor: ToolExecutor
    tool_schemas: List[Dict[str, Any]]
    execution_context: ExecutionContext


def _content_text(message: AIMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    return "".join(
        part.get("text", "") if isinstance(part, dict) else str(part)
        for part in message.content
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ChatEngineError) and exc.retryable


class ChatOrchestrator:
    """Answers a user turn with a bounded, retried tool-calling loop"""

    def __init__(
        self,
        provider: GenerationProvider,
        message_log: MessageLog,
        history: HistoryReconstructor,
        assembler: ContextAssembler,
        retriever: Optional[RagRetriever] = None,
        indexer: Optional[ConversationIndexer] = None,
        profiles: Optional[ProfileDirectory] = None,
        settings: Optional[AgentSettings] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.provider = provider
        self.message_log = message_log
        self.history = history
        self.assembler = assembler
        self.retriever = retriever
        self.indexer = indexer
        self.profiles = profiles
        self.settings = settings or AgentSettings()
        self.metrics = metrics or MetricsCollector()
        self._sleep = sleep
        self._turn_locks = KeyedLock()
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the generate/tool-execution graph"""

        workflow = StateGraph(ToolLoopState)

        workflow.add_node("generate", self.generate_node)
        workflow.add_node("execute_tools", self.tool_execution_node)

        workflow.set_entry_point("generate")

        workflow.add_conditional_edges(
            "generate",
            self.route_after_generation,
            {
                "tools": "execute_tools",
                "done": END
            }
        )

        workflow.add_conditional_edges(
            "execute_tools",
            self.route_after_tools,
            {
                "continue": "generate",
                "step_limit": END
            }
        )

        return workflow.compile()

    async def chat(
        self,
        conversation_context: ConversationContext,
        tools: Union[ToolRegistry, Iterable[AgentTool], None] = None
    ) -> AIResponse:
        """Answer the latest user message of a conversation"""

        async with self._turn_locks.hold(conversation_context.context_id):
            structlog.contextvars.bind_contextvars(
                context_id=conversation_context.context_id,
                user_id=conversation_context.user_id
            )
            try:
                return await self._chat(conversation_context, tools)
            finally:
                structlog.contextvars.unbind_contextvars("context_id", "user_id", "attempt")

    async def _chat(
        self,
        conversation_context: ConversationContext,
        tools: Union[ToolRegistry, Iterable[AgentTool], None]
    ) -> AIResponse:
        started = time.perf_counter()
        registry = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools or [])
        execution_context = self._execution_context(conversation_context)
        execution_context.profile = await self._profile(conversation_context.context_id)

        user_turn = await self._persist(StoredMessage(
            context_id=conversation_context.context_id,
            direction=Direction.INCOMING,
            content=conversation_context.message,
            metadata=dict(conversation_context.message_metadata),
        ))

        run = _TurnRun(
            executor=ToolExecutor(registry, metrics=self.metrics),
            tool_schemas=registry.provider_schemas(),
            execution_context=execution_context,
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_retries + 1),
            wait=wait_exponential(multiplier=self.settings.retry_base_seconds, max=self.settings.retry_max_seconds),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=False,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    structlog.contextvars.bind_contextvars(attempt=attempts)
                    final_state = await self._run_attempt(conversation_context, registry, run, user_turn.id)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error("Retries exhausted", attempts=attempts, last_error=repr(last_error))
            self.metrics.increment_counter("chat.retry_exhausted")
            raise ChatEngineError.fatal(
                f"Generation failed after {attempts} attempts",
                ErrorKind.RETRY_EXHAUSTED,
                cause=last_error,
                attempts=attempts,
            ) from last_error
        except ChatEngineError as exc:
            logger.error("Chat failed", code=exc.code, retryable=exc.retryable, attempts=attempts, cause=repr(exc.cause))
            self.metrics.increment_counter("chat.failed", tags={"code": exc.code})
            raise

        text, multiple_messages = self._extract_reply(final_state)
        response = AIResponse(
            text=text,
            tool_calls=final_state["tool_calls"],
            tool_results=final_state["tool_results"],
            tokens_used=final_state["tokens_used"],
            multiple_messages=multiple_messages,
            attempts=attempts,
        )

        await self._persist(StoredMessage(
            context_id=conversation_context.context_id,
            direction=Direction.OUTGOING,
            content=text,
            metadata={
                "tool_calls": [call.model_dump() for call in response.tool_calls],
                "tool_results": [result.model_dump() for result in response.tool_results],
                "steps": final_state["steps"],
                "usage": {"total_tokens": response.tokens_used},
                "multiple_messages": multiple_messages,
                "generated_at": datetime.now(timezone.utc).isoformat(),
            },
        ))
        await self._index_conversation(conversation_context.context_id)

        response.response_time_ms = round((time.perf_counter() - started) * 1000, 2)
        self.metrics.record_latency("chat", response.response_time_ms, tags={"attempts": str(attempts)})
        logger.info(
            "Chat completed",
            attempts=attempts,
            steps=len(final_state["steps"]),
            tool_calls=len(response.tool_calls),
            tokens_used=response.tokens_used,
            response_time_ms=response.response_time_ms
        )
        return response

    async def _run_attempt(
        self,
        conversation_context: ConversationContext,
        registry: ToolRegistry,
        run: _TurnRun,
        exclude_id: str
    ) -> ToolLoopState:
        """RAG, assembly and the tool loop, all re-run on every attempt"""

        try:
            context_id = conversation_context.context_id
            rag_chunks = []
            if self.settings.rag_enabled and self.retriever is not None:
                rag_chunks = await self.retriever.retrieve(
                    context_id,
                    conversation_context.message,
                    top_k=self.settings.rag_top_k,
                    min_similarity=self.settings.rag_min_similarity
                )

            history_limit = conversation_context.history_limit
            if history_limit is None:
                history_limit = self.settings.history_limit
            history = await self.history.reconstruct(context_id, history_limit, exclude_ids=[exclude_id])

            assembled = self.assembler.assemble(
                SessionContext(
                    profile=run.execution_context.profile,
                    tools=registry.descriptions(),
                    user_name=conversation_context.user_name,
                ),
                rag_chunks,
                history,
                HumanMessage(content=self._user_text(conversation_context)),
            )

            initial: ToolLoopState = {
                "messages": assembled.messages,
                "pending_calls": [],
                "tool_calls": [],
                "tool_results": [],
                "reply_results": [],
                "steps": [],
                "step_count": 0,
                "tokens_used": 0,
                "final_text": "",
            }
            return await self.workflow.ainvoke(
                initial,
                config={
                    "configurable": {"run": run},
                    "recursion_limit": self.settings.max_tool_steps * 2 + 5,
                },
            )
        except ChatEngineError:
            raise
        except Exception as exc:
            raise classify_provider_exception(exc) from exc

    async def generate_node(self, state: ToolLoopState, config: RunnableConfig) -> Dict[str, Any]:
        """Ask the provider for the next step"""

        run: _TurnRun = config["configurable"]["run"]
        step = state["step_count"] + 1

        try:
            response = await self.provider.generate(
                model=self.settings.model_name,
                messages=state["messages"],
                tools=run.tool_schemas,
                max_output_tokens=self.settings.max_output_tokens,
                temperature=self.settings.temperature,
            )
        except Exception as exc:
            raise classify_provider_exception(exc) from exc

        calls = [
            ToolCallRecord(id=call.get("id") or f"call_{uuid.uuid4().hex[:12]}", name=call["name"], args=call.get("args") or {})
            for call in response.tool_calls
        ]
        if calls:
            # Ids must line up with the tool messages that follow
            response = response.model_copy(update={
                "tool_calls": [
                    {"name": call.name, "args": call.args, "id": call.id, "type": "tool_call"}
                    for call in calls
                ]
            })

        text = _content_text(response)
        if not calls and not text.strip() and not state["tool_results"]:
            raise ChatEngineError.transient("Model generated no content", ErrorKind.NO_CONTENT_GENERATED)

        usage = response.usage_metadata or {}
        step_tokens = int(usage.get("total_tokens", 0))

        logger.info("Generation step", step=step, tool_calls=[call.name for call in calls], tokens=step_tokens)

        return {
            "messages": state["messages"] + [response],
            "pending_calls": calls,
            "tool_calls": state["tool_calls"] + calls,
            "steps": state["steps"] + [{
                "step": step,
                "text": text,
                "tool_calls": [call.name for call in calls],
                "tokens": step_tokens,
            }],
            "step_count": step,
            "tokens_used": state["tokens_used"] + step_tokens,
            "final_text": text,
        }

    async def tool_execution_node(self, state: ToolLoopState, config: RunnableConfig) -> Dict[str, Any]:
        """Run every tool call requested in the last step"""

        run: _TurnRun = config["configurable"]["run"]
        tool_messages: List[BaseMessage] = []
        records: List[ToolResultRecord] = []
        replies: List[ToolResult] = []

        for call in state["pending_calls"]:
            record, result = await run.executor.execute(call, run.execution_context)
            records.append(record)
            if result is not None:
                replies.append(result)
            tool_messages.append(ToolMessage(
                content=json.dumps(record.output, default=str),
                tool_call_id=call.id,
                name=call.name,
                status=record.status,
            ))

        return {
            "messages": state["messages"] + tool_messages,
            "pending_calls": [],
            "tool_results": state["tool_results"] + records,
            "reply_results": state["reply_results"] + replies,
        }

    def route_after_generation(self, state: ToolLoopState) -> str:
        return "tools" if state["pending_calls"] else "done"

    def route_after_tools(self, state: ToolLoopState) -> str:
        if state["step_count"] >= self.settings.max_tool_steps:
            logger.warning("Tool step limit reached", step_limit=self.settings.max_tool_steps)
            return "step_limit"
        return "continue"

    @staticmethod
    def _extract_reply(state: ToolLoopState):
        """A tool's literal reply wins over the model's own text"""

        for result in state["reply_results"]:
            if isinstance(result, MultiTextResult):
                return result.messages[0], list(result.messages)
            if isinstance(result, TextResult):
                return result.message, None
        return state["final_text"], None

    def _execution_context(self, conversation_context: ConversationContext) -> ExecutionContext:
        try:
            return ExecutionContext(
                user_id=conversation_context.user_id,
                context_id=conversation_context.context_id,
                user_name=conversation_context.user_name,
                user_message=conversation_context.message,
            )
        except ValidationError as exc:
            raise ChatEngineError.fatal(
                "Chat requires an authenticated user id",
                ErrorKind.INVALID_ARGUMENT,
                cause=exc,
            ) from exc

    async def _profile(self, context_id: str) -> Profile:
        if self.profiles is None:
            return Profile()
        try:
            profile = await self.profiles.get(context_id)
        except Exception:
            logger.exception("Profile lookup failed, using default", context_id=context_id)
            return Profile()
        return profile or Profile()

    @staticmethod
    def _user_text(conversation_context: ConversationContext) -> str:
        return with_location(conversation_context.message, conversation_context.message_metadata)

    async def _persist(self, message: StoredMessage) -> StoredMessage:
        try:
            return await self.message_log.append(message)
        except Exception as exc:
            raise ChatEngineError.fatal(
                "Failed to persist conversation turn",
                ErrorKind.UNKNOWN_ERROR,
                cause=exc,
                direction=message.direction.value,
            ) from exc

    async def _index_conversation(self, context_id: str) -> None:
        """Make persisted turns searchable once enough of them are pending"""

        if not self.settings.rag_enabled or self.indexer is None:
            return
        try:
            await self.indexer.index_pending(context_id)
        except Exception:
            logger.exception("Conversation indexing failed", context_id=context_id)
            self.metrics.increment_counter("rag.index_failed")

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Retrying chat after transient failure",
            attempt=retry_state.attempt_number,
            delay_seconds=delay,
            code=getattr(error, "code", None)
        )
        self.metrics.increment_counter("chat.retries")
