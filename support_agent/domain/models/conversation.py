from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from langchain_core.messages import BaseMessage


class RagChunk(BaseModel):
    """A span of past conversation returned by similarity search"""
    id: str
    context_id: str
    text: str
    chunk_index: int = 0
    message_ids: List[str] = Field(default_factory=list)
    first_message_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    similarity: float = Field(0.0, description="Score relative to the current query, not persisted")


class TokenBudget(BaseModel):
    """Approximate token accounting for one assembled request"""
    system_tokens: int = 0
    history_tokens: int = 0
    user_tokens: int = 0
    context_window: int
    warning_ratio: float = 0.8

    @property
    def total_tokens(self) -> int:
        return self.system_tokens + self.history_tokens + self.user_tokens

    @property
    def usage_percent(self) -> float:
        if self.context_window <= 0:
            return 1.0
        return self.total_tokens / self.context_window

    @property
    def near_limit(self) -> bool:
        return self.usage_percent >= self.warning_ratio

    def summary(self) -> Dict[str, Any]:
        return {
            "system_tokens": self.system_tokens,
            "history_tokens": self.history_tokens,
            "user_tokens": self.user_tokens,
            "total_tokens": self.total_tokens,
            "context_window": self.context_window,
            "usage_percent": round(self.usage_percent * 100, 2),
            "near_limit": self.near_limit,
        }


class AssembledContext(BaseModel):
    """Ordered provider messages plus their budget"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: List[BaseMessage]
    token_budget: TokenBudget
