from typing import Dict, Any, List, Optional, Protocol, Callable, Union, Awaitable
import structlog

from .base_step import ChoiceStep, LookupStep, TextStep, YesNoStep
from .state_machine import WizardDefinition

logger = structlog.get_logger(__name__)

TASK_CREATION = "task_creation"

TASK_TYPES = {"maintenance": "maintenance", "uninstall": "uninstall"}

DEFAULT_WORKERS: Dict[int, str] = {
    9: "wmarwan",
    10: "walewe",
    11: "wtaktak",
    12: "wnour",
    13: "wtest",
    15: "wjhonny",
    17: "wchristelle",
    22: "hugilo",
    23: "hueddy",
    26: "collmohamadalhamad",
}


class CustomerLookup(Protocol):
    async def search(self, identifier: str) -> List[Dict[str, Any]]: ...


class BillingService(Protocol):
    async def create_task(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...


def build_task_creation_wizard(
    customers: CustomerLookup,
    billing: BillingService,
    workers: Optional[Dict[int, str]] = None,
    on_timeout: Optional[Callable[[str], Union[None, Awaitable[None]]]] = None,
    timeout_ms: Optional[int] = None,
    max_attempts: Optional[int] = None
) -> WizardDefinition:
    """Guided billing task creation: customer, type, message, worker, whatsapp"""

    roster = workers or DEFAULT_WORKERS

    async def resolve_customer(identifier: str) -> Optional[str]:
        matches = await customers.search(identifier)
        if not matches:
            return None
        return matches[0].get("username") or identifier

    async def create_task(user_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "type": values["type"],
            "message": values["message"],
            "customer_username": values["customer"],
            "wid": values["worker"],
            "whatsapp": values["whatsapp"],
        }
        logger.info("Creating billing task", user_id=user_id, customer=payload["customer_username"], wid=payload["wid"])
        return await billing.create_task(payload)

    def summary(values: Dict[str, Any]) -> str:
        worker = roster.get(values.get("worker"), values.get("worker"))
        return "\n".join([
            "<b>New task</b>",
            f"Customer: <code>{values.get('customer')}</code>",
            f"Type: {values.get('type')}",
            f"Message: {values.get('message')}",
            f"Worker: {worker}",
            f"WhatsApp notification: {'yes' if values.get('whatsapp') else 'no'}",
            "Confirm to create the task or cancel to discard it.",
        ])

    return WizardDefinition(
        name=TASK_CREATION,
        title="task creation",
        steps=[
            LookupStep(
                "customer",
                "Which customer is this task for? Send a username or phone number.",
                lookup=resolve_customer,
                not_found="No customer found for '{value}'. Check the username or phone number.",
            ),
            ChoiceStep("type", "What type of task is it?", TASK_TYPES),
            TextStep("message", "Describe the task.", max_length=1000),
            ChoiceStep(
                "worker",
                "Which worker should handle it?",
                {name: wid for wid, name in roster.items()},
                aliases={str(wid): wid for wid in roster},
            ),
            YesNoStep("whatsapp", "Send a WhatsApp notification to the customer? (yes/no)"),
        ],
        on_complete=create_task,
        on_timeout=on_timeout,
        timeout_ms=timeout_ms,
        max_attempts=max_attempts,
        summary=summary,
    )
