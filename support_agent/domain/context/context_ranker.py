from typing import List, Tuple, Iterable

from support_agent.domain.models.conversation import RagChunk
from .memory.vector_memory_store import recency_key


class ContextRanker:
    """Filters and orders retrieved chunks"""

    def rank(
        self,
        scored: Iterable[Tuple[RagChunk, float]],
        top_k: int,
        min_similarity: float
    ) -> List[RagChunk]:
        """Keep chunks at or above the floor, best first, at most top_k"""

        if top_k <= 0:
            return []

        eligible = [
            chunk.model_copy(update={"similarity": score})
            for chunk, score in scored
            if score >= min_similarity
        ]

        # Ties go to the chunk whose last source turn is most recent
        eligible.sort(key=lambda chunk: (chunk.similarity, recency_key(chunk)), reverse=True)
        return eligible[:top_k]

    @staticmethod
    def format_for_prompt(chunks: List[RagChunk]) -> str:
        """Render chunks as numbered grounding entries"""

        return "\n\n".join(
            f"[Context {index} - {chunk.similarity * 100:.1f}% relevant]\n{chunk.text}"
            for index, chunk in enumerate(chunks, start=1)
        )
