from typing import List, Optional
import time
import uuid
import structlog
from langchain_core.embeddings import Embeddings

from support_agent.domain.models.conversation import RagChunk
from .context_ranker import ContextRanker
from .memory.chunker import ConversationChunker
from .memory.runtime_memory import MessageLog
from .memory.vector_memory_store import SimilarityStore, InMemoryVectorStore

logger = structlog.get_logger(__name__)


class RagRetriever:
    """Semantic retrieval of past conversation chunks"""

    def __init__(
        self,
        embeddings: Embeddings,
        store: SimilarityStore,
        ranker: Optional[ContextRanker] = None,
        enabled: bool = True
    ):
        self.embeddings = embeddings
        self.store = store
        self.ranker = ranker or ContextRanker()
        self.enabled = enabled

    async def retrieve(
        self,
        context_id: str,
        query_text: str,
        top_k: int = 3,
        min_similarity: float = 0.5
    ) -> List[RagChunk]:
        """Top-k chunks scoped to context_id at or above min_similarity

        Never raises: a disabled retriever, an empty index or a failing
        collaborator all yield an empty list.
        """

        if not self.enabled or not query_text.strip() or top_k <= 0:
            return []

        started = time.perf_counter()
        try:
            if not await self.store.has_chunks(context_id):
                logger.debug("No embeddings found for RAG", context_id=context_id)
                return []

            vector = await self.embeddings.aembed_query(query_text)
            scored = await self.store.search(context_id, vector, top_k)
        except Exception:
            logger.exception("RAG retrieval failed", context_id=context_id)
            return []

        chunks = self.ranker.rank(scored, top_k=top_k, min_similarity=min_similarity)

        logger.info(
            "Similarity search completed",
            context_id=context_id,
            candidates=len(scored),
            chunks_retrieved=len(chunks),
            similarities=[round(chunk.similarity, 3) for chunk in chunks],
            duration_ms=round((time.perf_counter() - started) * 1000, 2)
        )
        return chunks


class ConversationIndexer:
    """Embeds conversation windows that are not yet searchable"""

    def __init__(
        self,
        embeddings: Embeddings,
        store: InMemoryVectorStore,
        message_log: MessageLog,
        chunker: Optional[ConversationChunker] = None,
        scan_limit: int = 1000,
        min_pending: int = 1
    ):
        self.embeddings = embeddings
        self.store = store
        self.message_log = message_log
        self.chunker = chunker or ConversationChunker()
        self.scan_limit = scan_limit
        self.min_pending = min_pending

    async def index_pending(self, context_id: str) -> int:
        """Embed unindexed messages for a context and return how many were indexed"""

        indexed = await self.store.indexed_message_ids(context_id)
        recent = await self.message_log.get_recent(context_id, self.scan_limit)
        pending = [message for message in recent if message.id not in indexed and message.content]
        if len(pending) < self.min_pending:
            logger.debug("Below embedding threshold", context_id=context_id, pending=len(pending), threshold=self.min_pending)
            return 0


        chunks = self.chunker.chunk(pending)
        if not chunks:
            logger.debug("No new messages to embed", context_id=context_id, pending=len(pending))
            return 0

        vectors = await self.embeddings.aembed_documents([chunk.text for chunk in chunks])
        for chunk, vector in zip(chunks, vectors):
            await self.store.add(
                RagChunk(
                    id=uuid.uuid4().hex,
                    context_id=context_id,
                    text=chunk.text,
                    chunk_index=chunk.chunk_index,
                    message_ids=chunk.message_ids,
                    first_message_at=chunk.first_message_at,
                    last_message_at=chunk.last_message_at,
                    metadata=self.chunker.extract_metadata(chunk.messages),
                ),
                vector,
            )

        indexed_count = len({message_id for chunk in chunks for message_id in chunk.message_ids})
        logger.info("Embedded conversation chunks", context_id=context_id, chunks=len(chunks), messages=indexed_count)
        return indexed_count

    async def delete(self, context_id: str) -> int:
        removed = await self.store.delete(context_id)
        logger.info("Embeddings deleted", context_id=context_id, chunks=removed)
        return removed
