"""
Custom exception hierarchy for the runbook engine.

This module defines standardized error codes, messages, and categorization
for the errors that can occur while defining and executing runbooks.
"""
from contextlib import contextmanager
from enum import Enum
import logging
from typing import Optional, Dict, Any, Type, Union
import uuid

# Import dedicated error loggers
from utils.error_logging import system_error_logger, step_error_logger


class ErrorCode(Enum):
    """
    Enumeration of error codes for standardized error handling.

    Error codes are grouped by category for easier identification:
    - 1xx: Configuration errors
    - 2xx: Upstream API errors (AI providers, endpoint calls)
    - 3xx: Authentication errors
    - 4xx: Step errors
    - 5xx: Runbook and execution errors
    - 8xx: Data validation errors
    - 9xx: Uncategorized/system errors
    """
    # Configuration errors (1xx)
    CONFIG_NOT_FOUND = 101
    INVALID_CONFIG = 102
    MISSING_ENV_VAR = 103

    # API errors (2xx)
    API_CONNECTION_ERROR = 201
    API_AUTHENTICATION_ERROR = 202
    API_RATE_LIMIT_ERROR = 203
    API_RESPONSE_ERROR = 204
    API_TIMEOUT_ERROR = 205
    API_INVALID_REQUEST = 207

    # Authentication errors (3xx)
    AUTH_MISSING_CREDENTIALS = 301
    AUTH_INVALID_TOKEN = 302
    AUTH_INVALID_INTERNAL_CALLER = 303

    # Step errors (4xx)
    STEP_NOT_FOUND = 401
    STEP_EXECUTION_ERROR = 402
    STEP_INVALID_CONFIG = 403
    STEP_INVALID_OUTPUT = 404
    STEP_TYPE_NOT_SUPPORTED = 405
    STEP_TIMEOUT = 406

    # Runbook and execution errors (5xx)
    RUNBOOK_NOT_FOUND = 501
    RUNBOOK_INACTIVE = 502
    EXECUTION_NOT_FOUND = 503
    EXECUTION_NOT_RUNNING = 504
    EXECUTION_TIMEOUT = 505
    CONCURRENCY_LIMIT_REACHED = 506
    RESOURCE_NOT_FOUND = 507

    # Data validation errors (8xx)
    PARAMETER_MISSING = 801
    PARAMETER_TYPE_ERROR = 802
    PARAMETER_FORMAT_ERROR = 804
    SCHEMA_VALIDATION_ERROR = 806

    # Uncategorized/system errors (9xx)
    UNKNOWN_ERROR = 901
    NOT_IMPLEMENTED = 902
    DATABASE_ERROR = 907


class EngineError(Exception):
    """
    Base exception class for all runbook engine errors.

    All other custom exceptions inherit from this class, allowing for
    standardized error handling throughout the system.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize a new EngineError.

        Args:
            message: Human-readable error message
            code: Error code from the ErrorCode enum
            details: Additional error details for debugging or logging
        """
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"


class ConfigError(EngineError):
    """Exception raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_CONFIG,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class APIError(EngineError):
    """Exception raised when an upstream API call fails."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.API_RESPONSE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class AuthError(EngineError):
    """Exception raised when a caller cannot be identified."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.AUTH_INVALID_TOKEN,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class ValidationError(EngineError):
    """
    Exception raised for malformed runbook or step definitions.

    Carries every validation problem found, not only the first one.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SCHEMA_VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        errors: Optional[list] = None
    ):
        super().__init__(message, code, details)
        self.errors = errors or [message]


class StepExecutionError(EngineError):
    """
    Exception raised when a step fails while running.

    ``retryable`` tells the step runner whether another attempt can help.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STEP_EXECUTION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = True
    ):
        super().__init__(message, code, details)
        self.retryable = retryable


class StepConfigurationError(StepExecutionError):
    """Exception raised when a step definition cannot be executed as stored."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STEP_INVALID_CONFIG,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details, retryable=False)


class RunbookNotFoundError(EngineError):
    """Exception raised when a runbook or one of its steps does not exist."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RUNBOOK_NOT_FOUND,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class ExecutionNotFoundError(EngineError):
    """Exception raised when a runbook execution does not exist."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EXECUTION_NOT_FOUND,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class ResourceNotFoundError(EngineError):
    """Exception raised when a catalog entry (endpoint, prompt template) does not exist."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class ConcurrencyLimitError(EngineError):
    """Exception raised when no more executions may be started right now."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONCURRENCY_LIMIT_REACHED,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


_SENSITIVE_MARKERS = ["token", "bearer", "key", "auth", "password", "secret"]


@contextmanager
def error_context(
    component_name: str,
    operation: Optional[str] = None,
    error_class: Type[EngineError] = EngineError,
    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    logger: Optional[logging.Logger] = None
):
    """
    Context manager for standardized error handling across the system.

    Provides consistent error handling, logging, and error wrapping
    for any component operation. Use with a 'with' statement to wrap code
    that may raise exceptions.

    Args:
        component_name: Name of the component (for error messages)
        operation: Description of the operation (for error messages)
        error_class: The EngineError subclass to use for wrapping
        error_code: Error code to use for non-EngineError exceptions
        logger: Logger to use (if None, creates a new one)

    Yields:
        Control to the wrapped code block

    Raises:
        EngineError: With appropriate error information
    """
    if logger is None:
        logger = logging.getLogger(f"error.{component_name}")

    try:
        yield
    except Exception as e:
        # Generate a unique error ID for tracking
        error_id = str(uuid.uuid4())

        # Already one of ours: log and pass through untouched
        if isinstance(e, EngineError):
            if isinstance(e, StepExecutionError):
                step_error_logger.error(f"[{error_id}] {component_name} - {e}")
            else:
                system_error_logger.error(f"[{error_id}] {component_name} - {e}")
            raise

        error_msg = f"Error in {component_name}"
        if operation:
            error_msg += f" during {operation}"

        # Redact potentially sensitive information
        error_string = str(e)
        if any(marker in error_string.lower() for marker in _SENSITIVE_MARKERS):
            error_string = "[REDACTED SENSITIVE INFORMATION]"

        wrapped_error = error_class(
            f"{error_msg}: {error_string}",
            error_code,
            {"original_error": error_string, "error_id": error_id}
        )

        if isinstance(wrapped_error, StepExecutionError):
            step_error_logger.error(f"[{error_id}] {error_msg}: {error_string}")
        else:
            system_error_logger.error(f"[{error_id}] {error_msg}: {error_string}")
        logger.debug(f"[{error_id}] wrapped {type(e).__name__} as {error_class.__name__}")

        raise wrapped_error from e


def error_message(error: Exception) -> str:
    """
    Return the human-readable message of an error.

    EngineErrors carry their message without the ``[CODE]`` prefix that
    ``str()`` adds; any other exception is rendered with ``str()``.

    Args:
        error: The exception to describe

    Returns:
        The message to store or show to a user
    """
    if isinstance(error, EngineError):
        return error.message
    return str(error) or type(error).__name__
