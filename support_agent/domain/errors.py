"""
Error taxonomy for the conversation engine.

Every failure that crosses the generation boundary is raised as a single
``ChatEngineError`` whose ``kind`` is one member of the closed ``ErrorKind``
enum. Transports map ``kind`` to a user-facing message with
``user_message_for`` instead of re-deriving the classification.
"""

from enum import Enum
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError


class ErrorKind(str, Enum):
    """Machine-readable error codes"""
    UPSTREAM_CALL_ERROR = "UPSTREAM_CALL_ERROR"
    NO_SUCH_TOOL = "NO_SUCH_TOOL"
    INVALID_TOOL_INPUT = "INVALID_TOOL_INPUT"
    NO_CONTENT_GENERATED = "NO_CONTENT_GENERATED"
    TYPE_VALIDATION_ERROR = "TYPE_VALIDATION_ERROR"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_STATUS_CODES = frozenset({429})

TRANSIENT_USER_MESSAGE = (
    "Sorry, I'm having trouble reaching the assistant right now. "
    "Please try again in a moment."
)
FATAL_USER_MESSAGE = "Sorry, something went wrong while processing your request."


class ChatEngineError(Exception):
    """Single classified error type raised by the conversation engine"""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN_ERROR,
        cause: Optional[BaseException] = None,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.cause = cause
        self.retryable = retryable
        self.details = details or {}

    @property
    def code(self) -> str:
        return self.kind.value

    @classmethod
    def transient(cls, message: str, kind: ErrorKind, cause: Optional[BaseException] = None, **details) -> "ChatEngineError":
        return cls(message, kind=kind, cause=cause, retryable=True, details=details)

    @classmethod
    def fatal(cls, message: str, kind: ErrorKind, cause: Optional[BaseException] = None, **details) -> "ChatEngineError":
        return cls(message, kind=kind, cause=cause, retryable=False, details=details)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses and structured logs"""
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            result["details"] = self.details
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"ChatEngineError(kind={self.kind.value!r}, retryable={self.retryable}, message={self.message!r})"


class WizardValidationError(Exception):
    """Raised by a wizard step when user input violates a constraint"""

    def __init__(self, constraint: str, field: Optional[str] = None):
        super().__init__(constraint)
        self.constraint = constraint
        self.field = field


def _status_code_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUS_CODES


def classify_provider_exception(exc: BaseException) -> ChatEngineError:
    """Map an exception raised at the generation boundary to a ChatEngineError"""

    if isinstance(exc, ChatEngineError):
        return exc

    status = _status_code_of(exc)
    if status is not None:
        return ChatEngineError(
            f"Generation provider call failed with HTTP {status}",
            kind=ErrorKind.UPSTREAM_CALL_ERROR,
            cause=exc,
            retryable=is_retryable_status(status),
            details={"status_code": status},
        )

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ChatEngineError.transient(
            f"Generation provider unreachable: {exc}",
            ErrorKind.UPSTREAM_CALL_ERROR,
            cause=exc,
        )

    # ValidationError subclasses ValueError, check it first
    if isinstance(exc, ValidationError):
        return ChatEngineError.fatal(
            "Structured output failed type validation",
            ErrorKind.TYPE_VALIDATION_ERROR,
            cause=exc,
        )

    if isinstance(exc, (ValueError, TypeError)):
        return ChatEngineError.fatal(
            f"Invalid argument to generation call: {exc}",
            ErrorKind.INVALID_ARGUMENT,
            cause=exc,
        )

    return ChatEngineError.fatal(
        f"Unexpected error from generation provider: {exc}",
        ErrorKind.UNKNOWN_ERROR,
        cause=exc,
    )


def user_message_for(error: ChatEngineError) -> str:
    """User-facing text for a classified error"""

    if error.retryable or error.kind in (ErrorKind.RETRY_EXHAUSTED, ErrorKind.UPSTREAM_CALL_ERROR):
        return TRANSIENT_USER_MESSAGE
    return f"{FATAL_USER_MESSAGE} (code: {error.code})"
