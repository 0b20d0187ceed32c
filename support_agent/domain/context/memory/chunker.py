from typing import Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime

from support_agent.domain.models.agent_state import StoredMessage, Direction


@dataclass
class ConversationChunk:
    """A window of consecutive messages prepared for embedding"""
    chunk_index: int
    text: str
    messages: List[StoredMessage] = field(default_factory=list)

    @property
    def message_ids(self) -> List[str]:
        return [message.id for message in self.messages]

    @property
    def first_message_at(self) -> datetime:
        return self.messages[0].created_at

    @property
    def last_message_at(self) -> datetime:
        return self.messages[-1].created_at


class ConversationChunker:
    """Sliding-window chunking of a conversation

    With chunk_size=3 and overlap=1, messages m1..m5 become [m1, m2, m3] and
    [m3, m4, m5]. A trailing window shorter than min_chunk_size is dropped.
    """

    def __init__(self, chunk_size: int = 10, overlap: int = 2, min_chunk_size: int = 3):
        if chunk_size <= 0 or overlap < 0 or overlap >= chunk_size:
            raise ValueError(f"Invalid chunk options: chunk_size={chunk_size}, overlap={overlap}")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.min_chunk_size = min_chunk_size

    def chunk(self, messages: List[StoredMessage]) -> List[ConversationChunk]:
        chunks: List[ConversationChunk] = []
        if len(messages) < self.min_chunk_size:
            return chunks

        step = self.chunk_size - self.overlap
        for start in range(0, len(messages), step):
            window = messages[start:start + self.chunk_size]
            if len(window) < self.min_chunk_size:
                break

            chunks.append(ConversationChunk(
                chunk_index=len(chunks),
                text=self.format_messages(window),
                messages=window,
            ))

            if start + self.chunk_size >= len(messages):
                break

        return chunks

    @staticmethod
    def format_messages(messages: List[StoredMessage]) -> str:
        """One line per message with content: [ts] User|Assistant[ [media]]: text"""

        lines = []
        for message in messages:
            if not message.content:
                continue
            role = "User" if message.direction == Direction.INCOMING else "Assistant"
            media = f" [{message.message_type}]" if message.message_type != "text" else ""
            lines.append(f"[{message.created_at.isoformat()}] {role}{media}: {message.content}")
        return "\n".join(lines)

    @staticmethod
    def extract_metadata(messages: List[StoredMessage]) -> Dict[str, Any]:
        incoming = sum(1 for message in messages if message.direction == Direction.INCOMING)
        return {
            "message_count": len(messages),
            "has_media": any(message.message_type != "text" for message in messages),
            "incoming_count": incoming,
            "outgoing_count": len(messages) - incoming,
        }
