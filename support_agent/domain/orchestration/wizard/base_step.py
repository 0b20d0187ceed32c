from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Callable, Awaitable

from support_agent.domain.errors import WizardValidationError


class WizardStep(ABC):
    """One capture step of a wizard dialogue"""

    def __init__(self, field: str, prompt: str):
        self.field = field
        self.prompt = prompt

    @abstractmethod
    async def validate(self, raw_input: str) -> Any:
        """Return the value to store or raise WizardValidationError"""
        pass

    def options(self) -> Optional[List[str]]:
        """Choices a transport may render as buttons"""
        return None

    def reject(self, constraint: str):
        raise WizardValidationError(constraint, field=self.field)


class TextStep(WizardStep):
    """Free text with length bounds"""

    def __init__(self, field: str, prompt: str, min_length: int = 1, max_length: Optional[int] = None):
        super().__init__(field, prompt)
        self.min_length = min_length
        self.max_length = max_length

    async def validate(self, raw_input: str) -> str:
        value = (raw_input or "").strip()
        if len(value) < self.min_length:
            self.reject(f"The {self.field} must not be empty." if self.min_length == 1
                        else f"The {self.field} must be at least {self.min_length} characters.")
        if self.max_length is not None and len(value) > self.max_length:
            self.reject(f"The {self.field} must be at most {self.max_length} characters.")
        return value


class ChoiceStep(WizardStep):
    """Input must match one of a fixed set of labels (case-insensitive)"""

    def __init__(self, field: str, prompt: str, choices: Dict[str, Any], aliases: Optional[Dict[str, Any]] = None):
        super().__init__(field, prompt)
        self.labels = list(choices.keys())
        self.choices = {label.lower(): value for label, value in {**(aliases or {}), **choices}.items()}

    async def validate(self, raw_input: str) -> Any:
        key = (raw_input or "").strip().lower()
        if key not in self.choices:
            self.reject(f"Please choose one of: {', '.join(self.labels)}.")
        return self.choices[key]

    def options(self) -> List[str]:
        return list(self.labels)


class YesNoStep(ChoiceStep):
    """Yes/no answer stored as 1/0"""

    def __init__(self, field: str, prompt: str):
        super().__init__(field, prompt, {"yes": 1, "no": 0}, aliases={"y": 1, "n": 0, "1": 1, "0": 0})


class LookupStep(WizardStep):
    """Input resolved through an async lookup, None meaning not found"""

    def __init__(
        self,
        field: str,
        prompt: str,
        lookup: Callable[[str], Awaitable[Optional[Any]]],
        not_found: str = "No match found for '{value}'."
    ):
        super().__init__(field, prompt)
        self.lookup = lookup
        self.not_found = not_found

    async def validate(self, raw_input: str) -> Any:
        value = (raw_input or "").strip()
        if not value:
            self.reject(f"The {self.field} must not be empty.")
        resolved = await self.lookup(value)
        if resolved in (None, ""):
            self.reject(self.not_found.format(value=value))
        return resolved
