from typing import Dict, Any, List, Optional, Callable, Awaitable, Union
from dataclasses import dataclass, field
from enum import Enum
import inspect
import structlog
from pydantic import BaseModel, Field

from support_agent.domain.context.state.idle_timer import IdleTimerManager
from support_agent.domain.context.state.keyed_lock import KeyedLock
from support_agent.domain.context.state.session_store import SessionStore, CREATED_AT, LAST_UPDATED
from support_agent.domain.errors import WizardValidationError
from support_agent.infrastructure.observability.logging import AgentLogger
from .base_step import WizardStep

logger = structlog.get_logger(__name__)

WIZARD_KEY = "_wizard"
STEP_KEY = "_step"
ATTEMPTS_KEY = "_attempts"

NO_ACTIVE_WIZARD = "There is no active form. Start a new one to continue."


class WizardStatus(str, Enum):
    """Coarse wizard lifecycle states"""
    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass
class WizardDefinition:
    """A linear, step-gated data-collection dialogue"""
    name: str
    title: str
    steps: List[WizardStep]
    on_complete: Callable[[str, Dict[str, Any]], Awaitable[Any]]
    on_timeout: Optional[Callable[[str], Union[None, Awaitable[None]]]] = None
    timeout_ms: Optional[int] = None
    max_attempts: Optional[int] = None
    summary: Optional[Callable[[Dict[str, Any]], str]] = field(default=None)

    @property
    def field_names(self) -> List[str]:
        return [step.field for step in self.steps]

    def missing_fields(self, bag: Optional[Dict[str, Any]]) -> List[str]:
        """Required fields that are absent, None or empty, in declared order"""

        bag = bag or {}
        return [name for name in self.field_names if bag.get(name) is None or bag.get(name) == ""]

    def confirmation_prompt(self, values: Dict[str, Any]) -> str:
        if self.summary is not None:
            return self.summary(values)
        lines = [f"<b>{self.title}</b>"]
        lines += [f"{name}: <code>{values.get(name)}</code>" for name in self.field_names]
        lines.append("Confirm to submit or cancel to discard.")
        return "\n".join(lines)


class SubmitResult(BaseModel):
    accepted: bool
    next_prompt: Optional[str] = None
    error: Optional[str] = None
    state: Optional[str] = None
    options: Optional[List[str]] = None
    attempts_remaining: Optional[int] = None


class ConfirmResult(BaseModel):
    ok: bool
    result: Any = None
    missing_fields: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class WizardStateMachine:
    """Per-user wizard dialogues over the session store and idle timers

    Every handler stops the user's idle timer before anything else, then
    runs under the user's lock so one input is fully handled before the next.
    Confirmed and cancelled wizards leave no session behind, so later input
    is rejected until a new wizard is started.
    """

    def __init__(
        self,
        sessions: SessionStore,
        timers: IdleTimerManager,
        default_timeout_ms: int = 300_000,
        default_max_attempts: int = 3,
        agent_logger: Optional[AgentLogger] = None
    ):
        self.sessions = sessions
        self.timers = timers
        self.default_timeout_ms = default_timeout_ms
        self.default_max_attempts = default_max_attempts
        self.definitions: Dict[str, WizardDefinition] = {}
        self.agent_logger = agent_logger or AgentLogger(__name__)
        self._locks = KeyedLock()

    def register(self, definition: WizardDefinition):
        if not definition.steps:
            raise ValueError(f"Wizard '{definition.name}' has no steps")
        self.definitions[definition.name] = definition

    async def start(self, user_id: str, wizard_name: str) -> SubmitResult:
        """Enter a wizard, discarding any dialogue in progress"""

        self.timers.stop(user_id)
        definition = self.definitions.get(wizard_name)
        if definition is None:
            raise KeyError(f"Unknown wizard '{wizard_name}'")

        async with self._locks.hold(user_id):
            previous = self.sessions.get(user_id)
            self.sessions.clear(user_id)
            self.sessions.set(user_id, {WIZARD_KEY: wizard_name, STEP_KEY: 0, ATTEMPTS_KEY: 0})
            self._arm_timer(user_id, definition)

            self.agent_logger.log_wizard_transition(
                user_id=user_id,
                wizard=wizard_name,
                from_state=self._state_name(previous, definition) if previous else "none",
                to_state=self._step_state(0),
                reason="start"
            )
            first = definition.steps[0]
            return SubmitResult(accepted=True, next_prompt=first.prompt, state=self._step_state(0), options=first.options())

    async def submit_field(self, user_id: str, field_name: str, raw_input: str) -> SubmitResult:
        """Validate input for the current step and advance on success"""

        self.timers.stop(user_id)

        async with self._locks.hold(user_id):
            bag = self.sessions.get(user_id)
            definition = self._definition_for(bag)
            if definition is None:
                return SubmitResult(accepted=False, error=NO_ACTIVE_WIZARD, state=WizardStatus.CANCELLED.value)

            index = bag[STEP_KEY]
            if index >= len(definition.steps):
                self._arm_timer(user_id, definition)
                return SubmitResult(
                    accepted=False,
                    error="All details are collected. Confirm or cancel.",
                    next_prompt=definition.confirmation_prompt(bag),
                    state=WizardStatus.AWAITING_CONFIRMATION.value
                )

            step = definition.steps[index]
            if field_name != step.field:
                self._arm_timer(user_id, definition)
                return SubmitResult(
                    accepted=False,
                    error=f"Expected a value for '{step.field}'.",
                    next_prompt=step.prompt,
                    state=self._step_state(index),
                    options=step.options()
                )

            try:
                value = await step.validate(raw_input)
            except WizardValidationError as exc:
                rejection = exc
            else:
                rejection = None

            # Cancelled or restarted while validating
            current = self.sessions.get(user_id)
            if not self._still_at(current, definition, index):
                return SubmitResult(accepted=False, error=NO_ACTIVE_WIZARD, state=WizardStatus.CANCELLED.value)
            if rejection is not None:
                return self._reject(user_id, definition, current, step, rejection)

            bag = self.sessions.set(user_id, {step.field: value, STEP_KEY: index + 1, ATTEMPTS_KEY: 0})
            self._arm_timer(user_id, definition)

            next_state = self._state_name(bag, definition)
            self.agent_logger.log_wizard_transition(
                user_id=user_id,
                wizard=definition.name,
                from_state=self._step_state(index),
                to_state=next_state,
                reason=f"{step.field} accepted"
            )

            if index + 1 < len(definition.steps):
                next_step = definition.steps[index + 1]
                return SubmitResult(accepted=True, next_prompt=next_step.prompt, state=next_state, options=next_step.options())
            return SubmitResult(
                accepted=True,
                next_prompt=definition.confirmation_prompt(bag),
                state=next_state,
                options=["confirm", "cancel"]
            )

    async def confirm(self, user_id: str) -> ConfirmResult:
        """Run the completion action if every required field is present"""

        self.timers.stop(user_id)

        async with self._locks.hold(user_id):
            bag = self.sessions.get(user_id)
            definition = self._definition_for(bag)
            if definition is None:
                return ConfirmResult(ok=False, error=NO_ACTIVE_WIZARD)

            missing = definition.missing_fields(bag)
            if missing:
                self._arm_timer(user_id, definition)
                logger.info("Wizard confirm rejected", user_id=user_id, wizard=definition.name, missing=missing)
                return ConfirmResult(ok=False, missing_fields=missing)

            values = {name: bag[name] for name in definition.field_names}
            try:
                result = await definition.on_complete(user_id, values)
            except Exception as exc:
                logger.exception("Wizard completion action failed", user_id=user_id, wizard=definition.name)
                self._arm_timer(user_id, definition)
                return ConfirmResult(ok=False, error=f"Could not complete the {definition.title}: {exc}")

            self.sessions.clear(user_id)
            self.agent_logger.log_wizard_transition(
                user_id=user_id,
                wizard=definition.name,
                from_state=self._state_name(bag, definition),
                to_state=WizardStatus.CONFIRMED.value,
                reason="confirmed"
            )
            return ConfirmResult(ok=True, result=result)

    async def cancel(self, user_id: str) -> None:
        """Abandon the dialogue; takes effect immediately, even mid-validation"""

        self.timers.stop(user_id)
        bag = self.sessions.get(user_id)
        definition = self._definition_for(bag)
        if definition is not None:
            self._abandon(user_id, definition, bag, reason="cancelled")

    def is_active(self, user_id: str) -> bool:
        return self._definition_for(self.sessions.get(user_id)) is not None

    def current_field(self, user_id: str) -> Optional[str]:
        """Field the active wizard expects next, None when awaiting confirmation or idle"""

        bag = self.sessions.get(user_id)
        definition = self._definition_for(bag)
        if definition is None or bag[STEP_KEY] >= len(definition.steps):
            return None
        return definition.steps[bag[STEP_KEY]].field

    def get_session(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.sessions.get(user_id)

    def clear_session(self, user_id: str) -> bool:
        self.timers.stop(user_id)
        return self.sessions.clear(user_id)

    def describe(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Public view of a wizard session for diagnostics"""

        bag = self.sessions.get(user_id)
        definition = self._definition_for(bag)
        if definition is None:
            return None
        return {
            "wizard": definition.name,
            "state": self._state_name(bag, definition),
            "fields": {name: bag.get(name) for name in definition.field_names if name in bag},
            "missing_fields": definition.missing_fields(bag),
            "attempts": bag.get(ATTEMPTS_KEY, 0),
            "timer_active": self.timers.is_active(user_id),
            "created_at": bag[CREATED_AT].isoformat(),
            "last_updated": bag[LAST_UPDATED].isoformat(),
        }

    def _reject(
        self,
        user_id: str,
        definition: WizardDefinition,
        bag: Dict[str, Any],
        step: WizardStep,
        error: WizardValidationError
    ) -> SubmitResult:
        max_attempts = definition.max_attempts or self.default_max_attempts
        attempts = bag.get(ATTEMPTS_KEY, 0) + 1

        if attempts >= max_attempts:
            self._abandon(user_id, definition, bag, reason="validation_exhausted")
            return SubmitResult(
                accepted=False,
                error=f"{error.constraint} Too many invalid attempts, the {definition.title} was cancelled.",
                state=WizardStatus.CANCELLED.value,
                attempts_remaining=0
            )

        self.sessions.set(user_id, {ATTEMPTS_KEY: attempts})
        self._arm_timer(user_id, definition)
        logger.info("Wizard input rejected", user_id=user_id, field=step.field, attempts=attempts)
        return SubmitResult(
            accepted=False,
            error=error.constraint,
            next_prompt=step.prompt,
            state=self._step_state(bag[STEP_KEY]),
            options=step.options(),
            attempts_remaining=max_attempts - attempts
        )

    def _still_at(self, bag: Optional[Dict[str, Any]], definition: WizardDefinition, index: int) -> bool:
        return self._definition_for(bag) is definition and bag.get(STEP_KEY) == index

    def _abandon(self, user_id: str, definition: WizardDefinition, bag: Dict[str, Any], reason: str):
        self.timers.stop(user_id)
        self.sessions.clear(user_id)
        self.agent_logger.log_wizard_transition(
            user_id=user_id,
            wizard=definition.name,
            from_state=self._state_name(bag, definition),
            to_state=WizardStatus.CANCELLED.value,
            reason=reason
        )

    def _arm_timer(self, user_id: str, definition: WizardDefinition):
        timeout_ms = definition.timeout_ms or self.default_timeout_ms
        self.timers.start(user_id, timeout_ms, lambda: self._on_timeout(user_id, definition))

    async def _on_timeout(self, user_id: str, definition: WizardDefinition):
        bag = self.sessions.get(user_id)
        if self._definition_for(bag) is not definition:
            return

        self._abandon(user_id, definition, bag, reason="idle_timeout")
        if definition.on_timeout is not None:
            result = definition.on_timeout(user_id)
            if inspect.isawaitable(result):
                await result

    def _definition_for(self, bag: Optional[Dict[str, Any]]) -> Optional[WizardDefinition]:
        if not bag or WIZARD_KEY not in bag:
            return None
        return self.definitions.get(bag[WIZARD_KEY])

    def _state_name(self, bag: Dict[str, Any], definition: WizardDefinition) -> str:
        index = bag.get(STEP_KEY, 0)
        if index >= len(definition.steps):
            return WizardStatus.AWAITING_CONFIRMATION.value
        return self._step_state(index)

    @staticmethod
    def _step_state(index: int) -> str:
        return f"STEP_{index + 1}"
