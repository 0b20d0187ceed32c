from .base_step import WizardStep, TextStep, ChoiceStep, YesNoStep, LookupStep
from .state_machine import (
    WizardStateMachine, WizardDefinition, WizardStatus, SubmitResult, ConfirmResult
)
from .task_creation import build_task_creation_wizard, TASK_CREATION, DEFAULT_WORKERS

__all__ = [
    "WizardStep",
    "TextStep",
    "ChoiceStep",
    "YesNoStep",
    "LookupStep",
    "WizardStateMachine",
    "WizardDefinition",
    "WizardStatus",
    "SubmitResult",
    "ConfirmResult",
    "build_task_creation_wizard",
    "TASK_CREATION",
    "DEFAULT_WORKERS",
]
