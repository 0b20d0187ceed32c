from typing import Dict, List, Tuple, Protocol, runtime_checkable, Sequence
import asyncio
import math

from support_agent.domain.models.conversation import RagChunk


@runtime_checkable
class SimilarityStore(Protocol):
    """Similarity search over embedded conversation chunks"""

    async def has_chunks(self, context_id: str) -> bool: ...

    async def search(self, context_id: str, vector: Sequence[float], top_k: int) -> List[Tuple[RagChunk, float]]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity, 0.0 for mismatched or zero vectors"""

    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def recency_key(chunk: RagChunk) -> float:
    if chunk.last_message_at is None:
        return float("-inf")
    return chunk.last_message_at.timestamp()


class InMemoryVectorStore:
    """Brute-force vector store scoped by context"""

    def __init__(self, max_chunks_per_context: int = 1000):
        self.chunks: Dict[str, List[Tuple[RagChunk, List[float]]]] = {}
        self.max_chunks_per_context = max_chunks_per_context
        self._lock = asyncio.Lock()

    async def add(self, chunk: RagChunk, vector: Sequence[float]) -> str:
        """Add an embedded chunk"""

        async with self._lock:
            entries = self.chunks.setdefault(chunk.context_id, [])
            entries.append((chunk, list(vector)))

            if len(entries) > self.max_chunks_per_context:
                del entries[: len(entries) - self.max_chunks_per_context]

        return chunk.id

    async def has_chunks(self, context_id: str) -> bool:
        async with self._lock:
            return bool(self.chunks.get(context_id))

    async def indexed_message_ids(self, context_id: str) -> set:
        async with self._lock:
            return {
                message_id
                for chunk, _ in self.chunks.get(context_id, [])
                for message_id in chunk.message_ids
            }

    async def search(self, context_id: str, vector: Sequence[float], top_k: int) -> List[Tuple[RagChunk, float]]:
        """Return the top_k chunks by cosine similarity, most recent first on ties"""

        async with self._lock:
            entries = list(self.chunks.get(context_id, []))

        scored = [(chunk, cosine_similarity(vector, stored)) for chunk, stored in entries]
        scored.sort(key=lambda pair: (pair[1], recency_key(pair[0])), reverse=True)
        return scored[:top_k]

    async def delete(self, context_id: str) -> int:
        """Delete all chunks for a context"""

        async with self._lock:
            removed = self.chunks.pop(context_id, [])
        return len(removed)
