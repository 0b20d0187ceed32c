from .runtime_memory import MessageLog, InMemoryMessageLog
from .vector_memory_store import SimilarityStore, InMemoryVectorStore, cosine_similarity
from .cache_memory_store import TTLCache, ProfileDirectory, StaticProfileDirectory, CachedProfileDirectory
from .chunker import ConversationChunker, ConversationChunk

__all__ = [
    "MessageLog",
    "InMemoryMessageLog",
    "SimilarityStore",
    "InMemoryVectorStore",
    "cosine_similarity",
    "TTLCache",
    "ProfileDirectory",
    "StaticProfileDirectory",
    "CachedProfileDirectory",
    "ConversationChunker",
    "ConversationChunk",
]
