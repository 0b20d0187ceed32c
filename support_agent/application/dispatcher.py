from typing import Dict, Any, List, Optional
import structlog
from pydantic import BaseModel, Field

from support_agent.domain.models.agent_state import ConversationContext
from .container import AgentContainer

logger = structlog.get_logger(__name__)

CANCEL_WORDS = frozenset({"cancel", "/cancel", "stop"})
CONFIRM_WORDS = frozenset({"confirm", "/confirm", "yes"})


class TurnReply(BaseModel):
    """What the transport should send back for one user turn"""
    source: str = Field(description="wizard or chat")
    messages: List[str] = Field(default_factory=list)
    options: Optional[List[str]] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class TurnDispatcher:
    """Routes a user turn to the active wizard or to the chat orchestrator"""

    def __init__(self, container: AgentContainer):
        self.container = container

    async def handle(
        self,
        user_id: str,
        context_id: str,
        text: str,
        user_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TurnReply:
        wizards = self.container.wizards
        if wizards.is_active(user_id):
            return await self._handle_wizard(user_id, text)

        response = await self.container.orchestrator.chat(
            ConversationContext(
                context_id=context_id,
                user_id=user_id,
                user_name=user_name,
                message=text,
                message_metadata=metadata or {},
            ),
            self.container.tools,
        )
        return TurnReply(
            source="chat",
            messages=response.multiple_messages or [response.text],
            data=response.model_dump(exclude={"text", "multiple_messages"}),
        )

    async def _handle_wizard(self, user_id: str, text: str) -> TurnReply:
        wizards = self.container.wizards
        command = text.strip().lower()

        if command in CANCEL_WORDS:
            await wizards.cancel(user_id)
            return TurnReply(source="wizard", messages=["Cancelled."], data={"state": "cancelled"})

        field = wizards.current_field(user_id)
        if field is None:
            if command in CONFIRM_WORDS:
                result = await wizards.confirm(user_id)
                if result.ok:
                    return TurnReply(source="wizard", messages=["Done."], data=result.model_dump())
                message = result.error or f"Missing: {', '.join(result.missing_fields)}"
                return TurnReply(source="wizard", messages=[message], data=result.model_dump())
            return TurnReply(
                source="wizard",
                messages=["Reply confirm to submit or cancel to discard."],
                options=["confirm", "cancel"],
            )

        result = await wizards.submit_field(user_id, field, text)
        messages = [message for message in (result.error, result.next_prompt) if message]
        return TurnReply(source="wizard", messages=messages, options=result.options, data=result.model_dump())
