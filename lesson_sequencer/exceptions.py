"""Custom exceptions for the Lesson Sequencer.

Exception Hierarchy:
    SequencerError (base)
    ├── ValidationError
    │   ├── UnknownLessonError
    │   ├── UnknownModuleError
    │   └── MoveInProgressError
    ├── BackendError (with operation, status_code)
    │   └── BackendUnavailableError
    └── ConfigurationError
        └── MissingConfigError
"""

from typing import Optional


class SequencerError(Exception):
    """Base exception for all lesson sequencer errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(SequencerError):
    """Raised when input fails validation before any backend call."""

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Optional[str] = None):
        self.field = field
        self.value = value
        details = {}
        if field:
            details['field'] = field
        if value is not None:
            details['value'] = str(value)[:100]  # Truncate long values
        super().__init__(message, details=details)


class UnknownLessonError(ValidationError):
    """Raised when a lesson id is not present in the local store."""

    def __init__(self, lesson_id: str):
        self.lesson_id = lesson_id
        super().__init__(
            f"Unknown lesson: '{lesson_id}'",
            field='lesson_id',
            value=lesson_id
        )


class UnknownModuleError(ValidationError):
    """Raised when a module reference does not match any known module."""

    def __init__(self, module_id: str):
        self.module_id = module_id
        super().__init__(
            f"Unknown module: '{module_id}'",
            field='module_id',
            value=module_id
        )


class MoveInProgressError(ValidationError):
    """Raised when a lesson is changed again before its last change settled."""

    def __init__(self, lesson_id: str):
        self.lesson_id = lesson_id
        super().__init__(
            f"Lesson '{lesson_id}' still has a change in flight",
            field='lesson_id',
            value=lesson_id
        )


# =============================================================================
# Backend Errors
# =============================================================================

class BackendError(SequencerError):
    """Raised when a backend collaborator rejects a call.

    Attributes:
        operation: Name of the collaborator operation that failed
        status_code: HTTP-style status code when the backend reported one
    """

    def __init__(self, operation: str, reason: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.operation = operation
        self.reason = reason
        self.status_code = status_code
        message = f"Backend call '{operation}' failed"
        if reason:
            message += f": {reason}"
        super().__init__(message, details={
            'operation': operation,
            'status_code': status_code,
        })


class BackendUnavailableError(BackendError):
    """Raised for transient faults (timeouts, connection drops, 5xx).

    Attributes:
        retry_after: Suggested wait time in seconds before retrying
    """

    def __init__(self, operation: str, reason: Optional[str] = None,
                 status_code: Optional[int] = None,
                 retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(operation, reason=reason, status_code=status_code)


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(SequencerError):
    """Raised when there's a configuration problem."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message, details={'config_key': config_key})


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(self, config_key: str):
        super().__init__(
            f"Missing required configuration: '{config_key}'",
            config_key=config_key
        )
