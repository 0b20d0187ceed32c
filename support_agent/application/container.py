from typing import Iterable, Optional, Callable, Awaitable
from dataclasses import dataclass
from datetime import datetime
import asyncio
import structlog
from langchain_core.embeddings import Embeddings

from support_agent.domain.context.context_assembler import ContextAssembler
from support_agent.domain.context.history_reconstructor import HistoryReconstructor
from support_agent.domain.context.memory.cache_memory_store import (
    CachedProfileDirectory, ProfileDirectory, StaticProfileDirectory, TTLCache
)
from support_agent.domain.context.memory.chunker import ConversationChunker
from support_agent.domain.context.memory.runtime_memory import InMemoryMessageLog, MessageLog
from support_agent.domain.context.memory.vector_memory_store import InMemoryVectorStore
from support_agent.domain.context.rag_retriever import ConversationIndexer, RagRetriever
from support_agent.domain.context.state.idle_timer import IdleTimerManager
from support_agent.domain.context.state.session_store import SessionStore
from support_agent.domain.orchestration.core.generation import GenerationProvider
from support_agent.domain.orchestration.core.main_agent import ChatOrchestrator
from support_agent.domain.orchestration.wizard.state_machine import WizardDefinition, WizardStateMachine
from support_agent.domain.tool.base_tool import AgentTool
from support_agent.domain.tool.tool_registry import ToolRegistry
from support_agent.infrastructure.config.settings import AgentSettings, get_settings
from support_agent.infrastructure.observability.logging import MetricsCollector

logger = structlog.get_logger(__name__)


@dataclass
class AgentContainer:
    """Process-wide collaborators, built once at startup and passed to consumers"""
    settings: AgentSettings
    sessions: SessionStore
    timers: IdleTimerManager
    message_log: MessageLog
    vector_store: InMemoryVectorStore
    retriever: RagRetriever
    indexer: ConversationIndexer
    profiles: CachedProfileDirectory
    tools: ToolRegistry
    orchestrator: ChatOrchestrator
    wizards: WizardStateMachine
    metrics: MetricsCollector

    @classmethod
    def build(
        cls,
        provider: GenerationProvider,
        embeddings: Embeddings,
        settings: Optional[AgentSettings] = None,
        tools: Iterable[AgentTool] = (),
        wizard_definitions: Iterable[WizardDefinition] = (),
        profile_directory: Optional[ProfileDirectory] = None,
        message_log: Optional[MessageLog] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Optional[Callable[[], datetime]] = None
    ) -> "AgentContainer":
        settings = settings or get_settings()
        metrics = MetricsCollector()

        sessions = SessionStore(
            max_entries=settings.session_max_entries,
            ttl_seconds=settings.session_ttl_seconds,
            clock=clock,
        )
        timers = IdleTimerManager(presets=settings.timeout_presets_ms)
        message_log = message_log or InMemoryMessageLog()
        vector_store = InMemoryVectorStore()

        retriever = RagRetriever(embeddings, vector_store, enabled=settings.rag_enabled)
        indexer = ConversationIndexer(
            embeddings,
            vector_store,
            message_log,
            chunker=ConversationChunker(settings.rag_chunk_size, settings.rag_chunk_overlap),
            min_pending=settings.rag_index_threshold,
        )
        profiles = CachedProfileDirectory(
            profile_directory or StaticProfileDirectory(),
            TTLCache(default_ttl=settings.profile_cache_ttl_seconds),
        )

        orchestrator = ChatOrchestrator(
            provider=provider,
            message_log=message_log,
            history=HistoryReconstructor(message_log),
            assembler=ContextAssembler(
                context_window=settings.context_window,
                warning_ratio=settings.context_warning_ratio,
            ),
            retriever=retriever,
            indexer=indexer,
            profiles=profiles,
            settings=settings,
            metrics=metrics,
            sleep=sleep,
        )

        wizards = WizardStateMachine(
            sessions,
            timers,
            default_timeout_ms=settings.wizard_idle_timeout_ms,
            default_max_attempts=settings.wizard_max_attempts,
        )
        for definition in wizard_definitions:
            wizards.register(definition)

        logger.info(
            "Agent container built",
            model=settings.model_name,
            rag_enabled=settings.rag_enabled,
            wizards=list(wizards.definitions.keys()),
        )

        return cls(
            settings=settings,
            sessions=sessions,
            timers=timers,
            message_log=message_log,
            vector_store=vector_store,
            retriever=retriever,
            indexer=indexer,
            profiles=profiles,
            tools=ToolRegistry(tools),
            orchestrator=orchestrator,
            wizards=wizards,
            metrics=metrics,
        )

    def sweep_sessions(self) -> int:
        """Drop expired sessions and the idle timers still armed for them"""

        before = set(self.sessions.sessions)
        swept = self.sessions.sweep_expired()
        for key in before.difference(self.sessions.sessions):
            self.timers.stop(key)
        return swept

    def shutdown(self) -> int:
        """Cancel outstanding idle timers"""

        cancelled = self.timers.clear_all()
        logger.info("Agent container shut down", timers_cancelled=cancelled, sessions=self.sessions.size())
        return cancelled
