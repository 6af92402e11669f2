"""
Application error types.

Every error carries an ``error_code`` and optional ``details`` so callers
(CLI, session error sinks) can report them uniformly.
"""

from typing import Any, Optional

VALIDATION_ERROR = "VALIDATION_ERROR"
RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
EXTERNAL_API_FAILURE = "EXTERNAL_API_FAILURE"
DATABASE_ERROR = "DATABASE_ERROR"
SESSION_STATE_ERROR = "SESSION_STATE_ERROR"
INVALID_RATING = "INVALID_RATING"


class FlashdeckError(Exception):
    """Base class for all application errors."""

    error_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message, "error_code": self.error_code}
        if self.details is not None:
            data["details"] = self.details
        return data


class ValidationError(FlashdeckError):
    error_code = VALIDATION_ERROR
    default_message = "Invalid input data."


class NotFoundError(FlashdeckError):
    error_code = RESOURCE_NOT_FOUND
    default_message = "Resource not found."


class ConflictError(FlashdeckError):
    error_code = RESOURCE_CONFLICT
    default_message = "Resource conflict."


class DatabaseError(FlashdeckError):
    error_code = DATABASE_ERROR
    default_message = "Database operation failed."


class ExternalApiError(FlashdeckError):
    error_code = EXTERNAL_API_FAILURE
    default_message = "External API request failed."
    retryable = False


class SynthesisError(ExternalApiError):
    """Speech synthesis failed and retrying will not help."""

    default_message = "Speech synthesis failed."


class TransientSynthesisError(SynthesisError):
    """Speech synthesis failed but the user may retry."""

    default_message = "Speech synthesis is temporarily unavailable."
    retryable = True


class SessionStateError(FlashdeckError):
    """The session was driven in a state that does not allow the operation."""

    error_code = SESSION_STATE_ERROR
    default_message = "Operation not allowed in the current session state."


class InvalidRatingError(FlashdeckError, ValueError):
    error_code = INVALID_RATING
    default_message = "Invalid rating."
