from typing import Dict, Any, List, Optional, Union, Literal
from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    """Direction of a persisted message relative to the agent"""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class StoredMessage(BaseModel):
    """One entry of the append-only message log"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    context_id: str = Field(description="Conversation identifier")
    direction: Direction
    content: str = ""
    message_type: str = Field("text", description="text, image, location, ...")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Tool trace and transport extras")
    created_at: datetime = Field(default_factory=utcnow)


class Profile(BaseModel):
    """Bot personality used to render the system prompt"""
    name: str = "Assistant"
    timezone: str = "UTC"
    language: str = "en"
    instructions: Optional[str] = Field(None, description="Extra operator instructions")


class ExecutionContext(BaseModel):
    """Ambient identity handed to every tool execution"""
    user_id: str = Field(min_length=1, description="Authenticated user identifier")
    context_id: str
    user_name: Optional[str] = None
    user_message: str = ""
    profile: Profile = Field(default_factory=Profile)

    @field_validator("user_id")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("user_id must not be blank")
        return value


class ConversationContext(BaseModel):
    """Everything the orchestrator needs to answer one user turn"""
    context_id: str
    user_id: str
    user_name: Optional[str] = None
    message: str = Field(description="Latest user text")
    message_metadata: Dict[str, Any] = Field(default_factory=dict)
    history_limit: Optional[int] = Field(None, description="Overrides the configured history limit")


class TextResult(BaseModel):
    """Tool result carrying one literal reply"""
    kind: Literal["text"] = "text"
    message: str


class MultiTextResult(BaseModel):
    """Tool result carrying several replies to deliver in order"""
    kind: Literal["multi_text"] = "multi_text"
    messages: List[str] = Field(min_length=1)


class StructuredResult(BaseModel):
    """Tool result the model should read and summarise"""
    kind: Literal["structured"] = "structured"
    data: Dict[str, Any] = Field(default_factory=dict)


ToolResult = Union[TextResult, MultiTextResult, StructuredResult]


class ToolCallRecord(BaseModel):
    """A tool invocation requested by the model"""
    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResultRecord(BaseModel):
    """Outcome of one tool invocation"""
    tool_call_id: str
    name: str
    status: Literal["success", "error"] = "success"
    output: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: float = 0.0


class AIResponse(BaseModel):
    """Result of one chat turn"""
    text: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    tool_results: List[ToolResultRecord] = Field(default_factory=list)
    tokens_used: int = 0
    response_time_ms: float = 0.0
    multiple_messages: Optional[List[str]] = None
    attempts: int = 1
