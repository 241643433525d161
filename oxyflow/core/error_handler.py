"""
Centralized error handling with categorization and retry logic.

Components report failed attempts here. The handler classifies the error,
logs it at a level that matches the category and tells the caller whether
another attempt is worthwhile.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification and handling."""
    CONFIGURATION = "configuration"  # Missing model, bad component reference
    NETWORK = "network"  # Remote tool or model endpoint unreachable
    VALIDATION = "validation"  # Bad arguments, malformed model output
    EXECUTION = "execution"  # Failure inside a component's core logic
    PERMISSION = "permission"  # Callee not allow-listed
    RESOURCE = "resource"  # Store, queue or quota problems
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorContext:
    """
    Context information for one error occurrence.

    Attributes:
        exception: The original exception
        operation: Operation that failed (execute, pre_save, send_message, ...)
        component: Name of the component where the error occurred
        context_data: Additional context (node id, trace id, ...)
        timestamp: When the error occurred
        retry_count: Attempts made before this one
    """
    exception: Exception
    operation: str
    component: str
    context_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    retry_count: int = 0

    @property
    def error_message(self) -> str:
        """Get error message from exception."""
        return str(self.exception)

    @property
    def exception_type(self) -> str:
        """Get exception type name."""
        return type(self.exception).__name__


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy for an error category.

    Attributes:
        should_retry: Whether errors in this category are retryable
        recovery_hint: Default recovery suggestion
    """
    should_retry: bool
    recovery_hint: str


@dataclass(frozen=True)
class ErrorResolution:
    """
    How to proceed after an error.

    Attributes:
        should_retry: Whether the operation should be attempted again
        max_retries: Attempts allowed for the operation
        retry_count: Attempts made so far
        recovery_hint: User-friendly recovery suggestion
        category: Error category for this resolution
    """
    should_retry: bool
    max_retries: int
    retry_count: int
    recovery_hint: str
    category: ErrorCategory


class ErrorHandler:
    """
    Centralized error handler for component execution and persistence.

    The attempt budget belongs to the component (its ``retries`` value);
    the handler only decides whether the category allows using it.

    Example:
        ```python
        handler = ErrorHandler()
        resolution = handler.handle_error(
            exception=e,
            operation="execute",
            component=oxy.name,
            retry_count=attempt,
            max_retries=oxy.retries,
        )
        if not resolution.should_retry:
            ...
        ```
    """

    def __init__(self, logger_instance: Optional[logging.Logger] = None):
        """
        Initialize error handler.

        Args:
            logger_instance: Optional logger to use (defaults to module logger)
        """
        self.logger = logger_instance or logger
        self._retry_policies = self._init_retry_policies()

    def _init_retry_policies(self) -> Dict[ErrorCategory, RetryPolicy]:
        """Initialize retry policies for each error category."""
        return {
            ErrorCategory.CONFIGURATION: RetryPolicy(
                should_retry=False,
                recovery_hint="Review configuration and component registration"
            ),
            ErrorCategory.NETWORK: RetryPolicy(
                should_retry=True,
                recovery_hint="Check connectivity to the remote tool or model endpoint"
            ),
            ErrorCategory.VALIDATION: RetryPolicy(
                should_retry=True,
                recovery_hint="Validate arguments and output format"
            ),
            ErrorCategory.EXECUTION: RetryPolicy(
                should_retry=True,
                recovery_hint="Check component logic and its inputs"
            ),
            ErrorCategory.PERMISSION: RetryPolicy(
                should_retry=False,
                recovery_hint="Grant the caller access to the target component"
            ),
            ErrorCategory.RESOURCE: RetryPolicy(
                should_retry=True,
                recovery_hint="Check store and queue availability"
            ),
            ErrorCategory.UNKNOWN: RetryPolicy(
                should_retry=True,
                recovery_hint="An unexpected error occurred. Check logs for details"
            ),
        }

    def handle_error(
        self,
        exception: Exception,
        operation: str,
        component: str,
        context_data: Optional[Dict[str, Any]] = None,
        retry_count: int = 0,
        max_retries: int = 1,
        log: bool = True
    ) -> ErrorResolution:
        """
        Handle an error with categorization and retry determination.

        Args:
            exception: The exception that occurred
            operation: Description of the operation that failed
            component: Component where error occurred
            context_data: Additional context information
            retry_count: Attempts already made, zero-based
            max_retries: Total attempts the caller allows
            log: Whether to log the error here

        Returns:
            ErrorResolution with retry decision and recovery hint
        """
        error_context = ErrorContext(
            exception=exception,
            operation=operation,
            component=component,
            context_data=context_data or {},
            retry_count=retry_count
        )

        category = self.categorize_error(exception)
        policy = self._retry_policies[category]
        recovery_hint = self.get_recovery_hint(exception, category)

        should_retry = policy.should_retry and retry_count + 1 < max_retries

        if log:
            self._log_error(error_context, category, should_retry)

        return ErrorResolution(
            should_retry=should_retry,
            max_retries=max_retries,
            retry_count=retry_count,
            recovery_hint=recovery_hint,
            category=category
        )

    def categorize_error(self, exception: Exception) -> ErrorCategory:
        """
        Categorize exception based on type and message patterns.

        Order: explicit category attribute, exception type, message patterns,
        then UNKNOWN.

        Args:
            exception: Exception to categorize

        Returns:
            ErrorCategory classification
        """
        category = getattr(exception, "category", None)
        if category:
            if isinstance(category, ErrorCategory):
                return category
            try:
                return ErrorCategory(category)
            except ValueError:
                pass

        from .exceptions import (
            ConfigurationError,
            ExecutionError,
            ParseError,
            PermissionDeniedError,
            PersistenceError,
        )

        if isinstance(exception, ConfigurationError):
            return ErrorCategory.CONFIGURATION

        if isinstance(exception, PermissionDeniedError):
            return ErrorCategory.PERMISSION

        if isinstance(exception, PersistenceError):
            return ErrorCategory.RESOURCE

        if isinstance(exception, (ConnectionError, TimeoutError)):
            return ErrorCategory.NETWORK

        if isinstance(exception, (ParseError, ValueError, TypeError, KeyError)):
            return ErrorCategory.VALIDATION

        if isinstance(exception, ExecutionError):
            return ErrorCategory.EXECUTION

        message = str(exception).lower()

        network_patterns = ["timeout", "connection", "network", "rate limit", "unavailable"]
        if any(pattern in message for pattern in network_patterns):
            return ErrorCategory.NETWORK

        validation_patterns = ["invalid", "validation", "format", "schema", "parse", "decode"]
        if any(pattern in message for pattern in validation_patterns):
            return ErrorCategory.VALIDATION

        resource_patterns = ["quota", "capacity", "disk", "resource"]
        if any(pattern in message for pattern in resource_patterns):
            return ErrorCategory.RESOURCE

        return ErrorCategory.UNKNOWN

    def get_recovery_hint(
        self,
        exception: Exception,
        category: ErrorCategory
    ) -> str:
        """
        Get user-friendly recovery suggestion for an error.

        Args:
            exception: The exception that occurred
            category: Error category

        Returns:
            User-friendly recovery suggestion
        """
        hint = getattr(exception, "recovery_hint", None)
        if hint:
            return hint

        policy = self._retry_policies.get(category)
        if policy:
            return policy.recovery_hint

        return f"An error occurred: {str(exception)}. Check logs for details"

    def _log_error(
        self,
        error_context: ErrorContext,
        category: ErrorCategory,
        should_retry: bool
    ) -> None:
        """
        Log error with a level derived from category and retry status.

        Retried errors log at WARNING. Configuration, permission and
        unknown errors that end the operation log at ERROR with traceback.
        """
        log_message = (
            f"{category.value.upper()} error in {error_context.component} "
            f"during {error_context.operation}: {error_context.error_message}"
        )

        if should_retry:
            log_message += f" (retry {error_context.retry_count + 1})"
            self.logger.warning(log_message)
        elif category in (ErrorCategory.CONFIGURATION, ErrorCategory.UNKNOWN):
            self.logger.error(log_message, exc_info=error_context.exception)
        else:
            self.logger.error(log_message)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ErrorResolution",
    "RetryPolicy",
    "ErrorHandler",
]
