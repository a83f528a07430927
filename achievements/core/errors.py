"""
Review Errors

Every failure maps to a stable, machine-readable kind plus a message that
is safe to show to callers. Storage details never reach the message; they
stay on the chained cause and in the logs.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Stable error identifiers exposed to callers."""
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INVALID_ARGUMENT = "invalid_argument"
    STORAGE_ERROR = "storage_error"


class WorkflowError(Exception):
    """Base exception for review and publishing errors."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "message": self.message}


class UnauthorizedError(WorkflowError):
    """Raised when an actor may not perform an action."""
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Insufficient permissions"


class NotFoundError(WorkflowError):
    """Raised when an achievement is missing or soft-deleted."""
    kind = ErrorKind.NOT_FOUND
    default_message = "Achievement not found"


class InvalidStateError(WorkflowError):
    """Raised when a transition's precondition does not hold."""
    kind = ErrorKind.INVALID_STATE
    default_message = "Achievement is not awaiting review"


class InvalidArgumentError(WorkflowError):
    """Raised when input validation fails."""
    kind = ErrorKind.INVALID_ARGUMENT
    default_message = "Invalid argument"


class StorageError(WorkflowError):
    """
    Raised when a storage collaborator fails.

    The public message is always generic.
    """
    kind = ErrorKind.STORAGE_ERROR
    default_message = "Storage is temporarily unavailable"
