"""Shared fakes for the conversation engine tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from langchain_core.messages import AIMessage

from support_agent.domain.context.context_assembler import ContextAssembler
from support_agent.domain.context.history_reconstructor import HistoryReconstructor
from support_agent.domain.context.memory.runtime_memory import InMemoryMessageLog
from support_agent.domain.models.conversation import RagChunk
from support_agent.domain.orchestration.core.main_agent import ChatOrchestrator
from support_agent.infrastructure.config.settings import AgentSettings


class FakeClock:
    """Deterministic clock advanced by hand."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class UpstreamHTTPError(Exception):
    """Stands in for an SDK error that carries an HTTP status."""

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class ScriptedProvider:
    """Generation provider replaying a script of AIMessages and exceptions."""

    def __init__(self, script: Sequence[Any], repeat_last: bool = False):
        self.script = list(script)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, *, model, messages, tools, max_output_tokens, temperature) -> AIMessage:
        self.calls.append({
            "model": model,
            "messages": list(messages),
            "tools": tools,
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
        })
        if not self.script:
            raise AssertionError("provider script exhausted")
        item = self.script[0] if self.repeat_last and len(self.script) == 1 else self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FixedScoreStore:
    """Similarity store returning predetermined scores."""

    def __init__(self, scored: List[Tuple[RagChunk, float]]):
        self.scored = scored
        self.search_calls = 0

    async def has_chunks(self, context_id: str) -> bool:
        return any(chunk.context_id == context_id for chunk, _ in self.scored)

    async def search(self, context_id, vector, top_k):
        self.search_calls += 1
        matching = [(chunk, score) for chunk, score in self.scored if chunk.context_id == context_id]
        matching.sort(key=lambda pair: pair[1], reverse=True)
        return matching[:top_k]


class RecordingSleep:
    """Injectable sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def ai_text(text: str, total_tokens: int = 10) -> AIMessage:
    return AIMessage(
        content=text,
        usage_metadata={"input_tokens": total_tokens - 2, "output_tokens": 2, "total_tokens": total_tokens},
    )


def ai_tool_call(name: str, args: Dict[str, Any], call_id: str = "call_1") -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"}],
        usage_metadata={"input_tokens": 5, "output_tokens": 3, "total_tokens": 8},
    )


def make_chunk(chunk_id: str, text: str, context_id: str = "ctx1", minutes_ago: int = 0) -> RagChunk:
    at = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return RagChunk(id=chunk_id, context_id=context_id, text=text, first_message_at=at, last_message_at=at)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def message_log() -> InMemoryMessageLog:
    return InMemoryMessageLog()


@pytest.fixture
def settings() -> AgentSettings:
    return AgentSettings(rag_enabled=False, history_limit=6)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_orchestrator(message_log, settings, recording_sleep):
    def factory(provider, retriever=None, indexer=None, **overrides) -> ChatOrchestrator:
        effective = settings.model_copy(update=overrides) if overrides else settings
        return ChatOrchestrator(
            provider=provider,
            message_log=message_log,
            history=HistoryReconstructor(message_log),
            assembler=ContextAssembler(context_window=effective.context_window),
            retriever=retriever,
            indexer=indexer,
            settings=effective,
            sleep=recording_sleep,
        )
    return factory
