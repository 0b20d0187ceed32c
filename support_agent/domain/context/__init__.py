# This module handles context engineering for one chat turn.
#
# +---------------------+
# |      Memory         |   (Persistent, external collaborators)
# |---------------------|
# | Message log         |
# | Chunk embeddings    |
# | Profiles            |
# +---------------------+
#
# +---------------------+
# |      State          |   (In-process, per user)
# |---------------------|
# | Session bags        |
# | Idle timers         |
# +---------------------+
#
#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Context            |   (Assembled per attempt)
# |------------------------------|
# | System prompt + tools        |
# | RAG chunks above the floor   |
# | Reconstructed N turns        |
# | Current user turn            |
# | Token budget                 |
# +------------------------------+
#         |
#         v
#   [generate / tool loop]

from .context_assembler import ContextAssembler, SessionContext, estimate_tokens
from .context_ranker import ContextRanker
from .history_reconstructor import HistoryReconstructor
from .rag_retriever import RagRetriever, ConversationIndexer

__all__ = [
    "ContextAssembler",
    "SessionContext",
    "estimate_tokens",
    "ContextRanker",
    "HistoryReconstructor",
    "RagRetriever",
    "ConversationIndexer",
]
