"""
Error taxonomy for signoff.

Engines return these inside structured results so callers can tell a
declined business rule apart from a system failure. The store and
coordinator layers raise them directly.

Kinds:
- invalid_transition: action not defined for the current status
- permission_denied: role or capability guard failed
- validation: a required field (comment, delegate, reason) is missing
- conflict: request moved on since the caller last read it
- not_found: unknown request, stage or workflow id
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Category of a signoff failure."""

    INVALID_TRANSITION = "invalid_transition"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"

    @property
    def retryable(self) -> bool:
        """Only stale-state conflicts are worth an automatic retry."""
        return self is ErrorKind.CONFLICT


class SignoffError(Exception):
    """Base class for all signoff errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value, "message": self.message}
        if self.field:
            data["field"] = self.field
        return data


class InvalidTransitionError(SignoffError):
    kind = ErrorKind.INVALID_TRANSITION


class PermissionDeniedError(SignoffError):
    kind = ErrorKind.PERMISSION_DENIED


class ValidationError(SignoffError):
    """A required input is missing or malformed. ``field`` names it."""

    kind = ErrorKind.VALIDATION


class ConflictError(SignoffError):
    kind = ErrorKind.CONFLICT


class NotFoundError(SignoffError):
    kind = ErrorKind.NOT_FOUND
