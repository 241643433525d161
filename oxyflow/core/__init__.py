"""Core runtime services: configuration, errors and background event handling."""

from .config import OxyflowConfig, load_config
from .error_handler import ErrorCategory, ErrorHandler
from .events import ChainedEventProcessor
from .exceptions import (
    OxyflowError,
    ConfigurationError,
    ValidationError,
    PermissionDeniedError,
    ExecutionError,
    ParseError,
    PersistenceError,
)
from .tasks import BackgroundTaskRegistry

__all__ = [
    "OxyflowConfig",
    "load_config",
    "ErrorCategory",
    "ErrorHandler",
    "ChainedEventProcessor",
    "BackgroundTaskRegistry",
    "OxyflowError",
    "ConfigurationError",
    "ValidationError",
    "PermissionDeniedError",
    "ExecutionError",
    "ParseError",
    "PersistenceError",
]
