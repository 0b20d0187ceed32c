from typing import Dict, List, Optional, Callable, Union
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import math
import structlog
from pydantic import BaseModel, Field
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from support_agent.domain.models.agent_state import Profile
from support_agent.domain.models.conversation import AssembledContext, RagChunk, TokenBudget
from .context_ranker import ContextRanker

logger = structlog.get_logger(__name__)

CHARS_PER_TOKEN = 4

FORMATTING_RULES = """MESSAGE FORMATTING:
Use HTML formatting in all responses:
- Bold: <b>text</b> for headings and important values
- Italic: <i>text</i> for notes
- Code: <code>text</code> for IPs, usernames and numbers
- Links: <a href="url">text</a>
- Never use markdown syntax, it is shown as plain text
- Escape <, > and & in user data"""

TOOL_RULES = """TOOL USAGE RULES:
- When the user gives a phone number, username or other identifier, look it up with a tool first
- Never invent account details, call the relevant tool instead
- Call tools without asking for confirmation
- When a tool returns a message you may relay it directly"""


def estimate_tokens(text: str) -> int:
    """Rough token count, one token per four characters"""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        text = content
    else:
        text = " ".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    # Tool call arguments also occupy the window
    for call in getattr(message, "tool_calls", None) or []:
        text += f"{call.get('name', '')}{call.get('args', {})}"
    return text


class SessionContext(BaseModel):
    """Per-turn inputs for the system prompt"""
    profile: Profile = Field(default_factory=Profile)
    tools: Dict[str, str] = Field(default_factory=dict, description="Tool name to description")
    user_name: Optional[str] = None


class ContextAssembler:
    """Composes system prompt, grounding, history and the current turn"""

    def __init__(
        self,
        context_window: int = 1_048_576,
        warning_ratio: float = 0.8,
        ranker: Optional[ContextRanker] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.context_window = context_window
        self.warning_ratio = warning_ratio
        self.ranker = ranker or ContextRanker()
        self._clock = clock

    def build_system_prompt(self, session_context: SessionContext, rag_chunks: List[RagChunk]) -> str:
        profile = session_context.profile
        local_now = self._clock().astimezone(self._zone(profile.timezone))

        sections = [
            f"CURRENT DATE: <b>{local_now.strftime('%Y-%m-%d')}</b> ({profile.timezone} timezone)",
            f"You are {profile.name}, an intelligent ISP customer support assistant.",
            "YOUR ROLE:\n"
            "- Provide accurate customer support\n"
            "- Use tools to fetch real-time customer data\n"
            "- Answer questions about accounts, billing and technical issues",
        ]

        if session_context.user_name:
            sections.append(f"You are talking with {session_context.user_name}.")

        if session_context.tools:
            tool_lines = "\n".join(
                f"{index}. {name} - {description}"
                for index, (name, description) in enumerate(session_context.tools.items(), start=1)
            )
            sections.append(f"AVAILABLE TOOLS:\n{tool_lines}")
            sections.append(TOOL_RULES)

        sections.append(FORMATTING_RULES)
        sections.append(
            "GUIDELINES:\n"
            f"- Language: {profile.language}\n"
            f"- Timezone: {profile.timezone}\n"
            "- Be concise but thorough"
        )

        if profile.instructions:
            sections.append(profile.instructions)

        if rag_chunks:
            sections.append(
                "=== SEMANTIC MEMORY (RAG) ===\n"
                "The following context was retrieved from our conversation history:\n\n"
                f"{self.ranker.format_for_prompt(rag_chunks)}\n\n"
                "Use this context to give answers that reference our actual conversations.\n"
                "==========================="
            )

        return "\n\n".join(sections)

    def assemble(
        self,
        session_context: SessionContext,
        rag_chunks: List[RagChunk],
        history: List[BaseMessage],
        current_turn: Union[str, HumanMessage]
    ) -> AssembledContext:
        """Ordered messages: system prompt, history, current user turn"""

        system = SystemMessage(content=self.build_system_prompt(session_context, rag_chunks))
        user = current_turn if isinstance(current_turn, HumanMessage) else HumanMessage(content=current_turn)

        budget = TokenBudget(
            system_tokens=estimate_tokens(_message_text(system)),
            history_tokens=sum(estimate_tokens(_message_text(message)) for message in history),
            user_tokens=estimate_tokens(_message_text(user)),
            context_window=self.context_window,
            warning_ratio=self.warning_ratio,
        )

        if budget.near_limit:
            logger.warning("Context window near limit", **budget.summary())
        else:
            logger.debug("Context assembled", **budget.summary())

        return AssembledContext(messages=[system, *history, user], token_budget=budget)

    @staticmethod
    def _zone(name: str):
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone, using UTC", timezone=name)
            return timezone.utc
