from typing import Dict, List, Protocol, runtime_checkable
from collections import defaultdict
import asyncio

from support_agent.domain.models.agent_state import StoredMessage


@runtime_checkable
class MessageLog(Protocol):
    """Append-only conversation log"""

    async def append(self, message: StoredMessage) -> StoredMessage: ...

    async def get_recent(self, context_id: str, limit: int) -> List[StoredMessage]: ...


class InMemoryMessageLog:
    """Process-local message log, oldest first per context"""

    def __init__(self, max_messages_per_context: int = 1000):
        self.conversations: Dict[str, List[StoredMessage]] = defaultdict(list)
        self.max_messages_per_context = max_messages_per_context
        self._lock = asyncio.Lock()

    async def append(self, message: StoredMessage) -> StoredMessage:
        """Add a message to the conversation"""

        async with self._lock:
            conversation = self.conversations[message.context_id]
            conversation.append(message)

            if len(conversation) > self.max_messages_per_context:
                del conversation[: len(conversation) - self.max_messages_per_context]

        return message

    async def get_recent(self, context_id: str, limit: int) -> List[StoredMessage]:
        """Get the most recent messages in chronological order"""

        if limit <= 0:
            return []
        async with self._lock:
            return list(self.conversations.get(context_id, [])[-limit:])

