from typing import Any, Dict, List, Iterable, Optional, Sequence
import json
import structlog
from pydantic import ValidationError
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from support_agent.domain.models.agent_state import (
    Direction, StoredMessage, ToolCallRecord, ToolResultRecord
)
from .memory.runtime_memory import MessageLog

logger = structlog.get_logger(__name__)


def with_location(text: str, metadata: Dict[str, Any]) -> str:
    """Prefix a shared location to the user's text"""

    latitude = metadata.get("latitude")
    longitude = metadata.get("longitude")
    if latitude is None or longitude is None:
        return text

    location = f"[Location shared: {latitude}, {longitude}]"
    return f"{location}\n{text}" if text else location


class CorruptToolMetadata(Exception):
    """Stored tool metadata cannot be replayed faithfully"""


class HistoryReconstructor:
    """Rebuilds provider messages from the persisted message log

    Outgoing messages store their tool calls and results as metadata. They
    are re-expanded as an assistant tool-call message followed directly by
    one tool message per call, then the assistant text.
    """

    def __init__(self, message_log: MessageLog):
        self.message_log = message_log

    async def reconstruct(
        self,
        context_id: str,
        max_turns: int,
        exclude_ids: Iterable[str] = ()
    ) -> List[BaseMessage]:
        """Most recent max_turns persisted messages, chronological"""

        if max_turns <= 0:
            return []

        try:
            stored = await self.message_log.get_recent(context_id, max_turns)
        except Exception:
            logger.exception("Failed to read conversation history", context_id=context_id)
            return []

        excluded = set(exclude_ids)
        history: List[BaseMessage] = []

        for message in stored:
            if message.id in excluded:
                continue
            try:
                history.extend(self._expand(message))
            except Exception:
                logger.warning(
                    "Skipping unreadable history message",
                    context_id=context_id,
                    message_id=message.id,
                    exc_info=True
                )

        logger.debug(
            "History reconstructed",
            context_id=context_id,
            stored=len(stored),
            messages=len(history)
        )
        return history

    def _expand(self, message: StoredMessage) -> List[BaseMessage]:
        if message.direction == Direction.INCOMING:
            return [HumanMessage(content=self._incoming_text(message))]

        try:
            replay = self._tool_replay(message)
        except CorruptToolMetadata as exc:
            logger.warning(
                "Degrading message with corrupt tool metadata to text",
                message_id=message.id,
                reason=str(exc)
            )
            replay = []

        if message.content:
            replay.append(AIMessage(content=message.content))
        return replay

    @staticmethod
    def _incoming_text(message: StoredMessage) -> str:
        return with_location(message.content, message.metadata)

    def _tool_replay(self, message: StoredMessage) -> List[BaseMessage]:
        raw_calls = message.metadata.get("tool_calls")
        if not raw_calls:
            return []

        calls = self._parse(ToolCallRecord, raw_calls)
        results = self._parse(ToolResultRecord, message.metadata.get("tool_results") or [])

        call_ids = [call.id for call in calls]
        if len(set(call_ids)) != len(call_ids):
            raise CorruptToolMetadata("duplicate tool call ids")

        results_by_call = {}
        for result in results:
            if result.tool_call_id not in call_ids:
                raise CorruptToolMetadata(f"result for unknown call {result.tool_call_id}")
            results_by_call[result.tool_call_id] = result

        missing = [call_id for call_id in call_ids if call_id not in results_by_call]
        if missing:
            raise CorruptToolMetadata(f"calls without results: {missing}")

        replay: List[BaseMessage] = [
            AIMessage(
                content="",
                tool_calls=[
                    {"name": call.name, "args": call.args, "id": call.id, "type": "tool_call"}
                    for call in calls
                ],
            )
        ]
        for call in calls:
            result = results_by_call[call.id]
            replay.append(ToolMessage(
                content=json.dumps(result.output, default=str),
                tool_call_id=call.id,
                name=call.name,
                status=result.status,
            ))
        return replay

    @staticmethod
    def _parse(model, raw: Optional[Sequence]) -> list:
        if not isinstance(raw, list):
            raise CorruptToolMetadata(f"expected a list, got {type(raw).__name__}")
        try:
            return [model.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise CorruptToolMetadata(str(exc)) from exc
