from typing import Dict, Any, List, Protocol
from html import escape
from pydantic import BaseModel, Field
import structlog

from support_agent.domain.models.agent_state import (
    ExecutionContext, MultiTextResult, StructuredResult, TextResult, ToolResult
)
from .base_tool import AgentTool

logger = structlog.get_logger(__name__)


class CustomerDirectory(Protocol):
    """Customer lookup API"""

    async def search(self, identifier: str) -> List[Dict[str, Any]]: ...


class SearchCustomerInput(BaseModel):
    identifier: str = Field(min_length=1, description="Customer phone number or username")


def format_customer(customer: Dict[str, Any]) -> str:
    """Render one customer record as an HTML reply"""

    status = "online" if customer.get("online") else "offline"
    lines = [
        f"<b>{escape(str(customer.get('name', 'Unknown')))}</b>",
        f"Username: <code>{escape(str(customer.get('username', '-')))}</code>",
        f"Status: <code>{status}</code>",
    ]
    for key in ("phone", "plan", "balance", "expiry"):
        if customer.get(key) not in (None, ""):
            lines.append(f"{key.capitalize()}: <code>{escape(str(customer[key]))}</code>")
    return "\n".join(lines)


class SearchCustomerTool(AgentTool):
    """Looks customers up by phone number or username"""

    name = "searchCustomer"
    description = "Look up a customer by phone number or username"
    input_model = SearchCustomerInput

    def __init__(self, directory: CustomerDirectory):
        self.directory = directory

    async def execute(self, tool_input: SearchCustomerInput, context: ExecutionContext) -> ToolResult:
        user_id = self.require_user(context)
        logger.info("Searching customer", user_id=user_id, identifier=tool_input.identifier)

        customers = await self.directory.search(tool_input.identifier)
        if not customers:
            return TextResult(message=f"No customer found for <code>{escape(tool_input.identifier)}</code>.")
        if len(customers) == 1:
            return TextResult(message=format_customer(customers[0]))
        return MultiTextResult(messages=[format_customer(customer) for customer in customers])


class CustomerCountInput(BaseModel):
    identifier: str = Field(min_length=1)


class CountCustomerMatchesTool(AgentTool):
    """Structured match count the model summarises itself"""

    name = "countCustomerMatches"
    description = "Count how many customers match an identifier"
    input_model = CustomerCountInput

    def __init__(self, directory: CustomerDirectory):
        self.directory = directory

    async def execute(self, tool_input: CustomerCountInput, context: ExecutionContext) -> ToolResult:
        self.require_user(context)
        customers = await self.directory.search(tool_input.identifier)
        return StructuredResult(data={
            "identifier": tool_input.identifier,
            "matches": len(customers),
            "usernames": [customer.get("username") for customer in customers],
        })
