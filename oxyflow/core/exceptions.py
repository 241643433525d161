"""
Exceptions for the oxyflow runtime with recovery hints.

Every exception carries an optional recovery_hint and category so the
ErrorHandler can classify it and decide whether a retry makes sense.
"""

from typing import Optional


class OxyflowError(Exception):
    """
    Base exception for all oxyflow errors.

    Attributes:
        recovery_hint: Optional user-friendly recovery suggestion
        category: Optional error category for automatic classification
    """

    def __init__(
        self,
        message: str,
        recovery_hint: Optional[str] = None,
        category: Optional[str] = None
    ):
        """
        Initialize oxyflow error.

        Args:
            message: Error message
            recovery_hint: Optional recovery suggestion
            category: Optional error category
        """
        super().__init__(message)
        self.recovery_hint = recovery_hint or self._default_recovery_hint()
        self.category = category

    def _default_recovery_hint(self) -> str:
        """Get default recovery hint for this error type."""
        return "Check logs for detailed error information"

    def is_retryable(self) -> bool:
        """
        Whether this error is retryable.

        Returns:
            True if error is retryable, False otherwise
        """
        return False


class ConfigurationError(OxyflowError):
    """Raised for invalid configuration or unresolvable component references."""

    def _default_recovery_hint(self) -> str:
        return "Review configuration and component registration, then restart"

    def is_retryable(self) -> bool:
        return False  # Fatal at startup


class ValidationError(ConfigurationError):
    """Raised when configuration or component attributes fail validation."""

    def _default_recovery_hint(self) -> str:
        return "Fix validation errors in configuration or component definition"


class PermissionDeniedError(OxyflowError):
    """Raised when a caller invokes a component it is not allowed to call."""

    def __init__(self, tool_name: str, recovery_hint: Optional[str] = None):
        super().__init__(f"No permission for tool: {tool_name}", recovery_hint)
        self.tool_name = tool_name

    def _default_recovery_hint(self) -> str:
        return "Add the tool to the caller's tools or sub_agents list"


class ExecutionError(OxyflowError):
    """Raised when a component's core execution fails."""

    def _default_recovery_hint(self) -> str:
        return "Verify component input and external dependencies. Retrying may help"

    def is_retryable(self) -> bool:
        return True


class ParseError(OxyflowError):
    """Raised when language-model output cannot be interpreted."""

    def _default_recovery_hint(self) -> str:
        return "The model output did not follow the expected format"

    def is_retryable(self) -> bool:
        return True


class PersistenceError(OxyflowError):
    """Raised when the node store or message queue is unavailable."""

    def _default_recovery_hint(self) -> str:
        return "Check store and queue connectivity. Records for this call may be missing"

    def is_retryable(self) -> bool:
        return True
