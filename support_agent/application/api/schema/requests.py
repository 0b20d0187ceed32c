from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """One user turn delivered by a transport"""
    user_id: str = Field(min_length=1)
    context_id: str = Field(min_length=1)
    message: str
    user_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WizardStartRequest(BaseModel):
    wizard: str


class FieldSubmission(BaseModel):
    value: str


class ErrorResponse(BaseModel):
    code: str
    message: str
    retryable: bool = False


class SessionResponse(BaseModel):
    user_id: str
    session: Optional[Dict[str, Any]] = None
    wizard: Optional[Dict[str, Any]] = None
    timer_active: bool = False


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int = 0
    active_timers: int = 0
    tools: List[str] = Field(default_factory=list)
