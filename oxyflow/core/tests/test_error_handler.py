"""
Tests for oxyflow.core.error_handler module.

Covers ErrorCategory, ErrorContext, ErrorResolution, error categorization,
retry decisions, recovery hints, and logging behavior.
"""

import logging
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from oxyflow.core.error_handler import (
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    ErrorResolution,
)
from oxyflow.core.exceptions import (
    ConfigurationError,
    ExecutionError,
    ParseError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)


# ---------------------------------------------------------------------------
# ErrorCategory tests
# ---------------------------------------------------------------------------


class TestErrorCategory:
    """Test ErrorCategory enum values."""

    def test_all_categories_defined(self):
        expected = {
            "configuration",
            "network",
            "validation",
            "execution",
            "permission",
            "resource",
            "unknown",
        }
        assert {cat.value for cat in ErrorCategory} == expected


# ---------------------------------------------------------------------------
# ErrorContext tests
# ---------------------------------------------------------------------------


class TestErrorContext:
    """Test ErrorContext frozen dataclass."""

    def test_basic_creation(self):
        exc = ValueError("test error")
        ctx = ErrorContext(exception=exc, operation="execute", component="calc")
        assert ctx.exception is exc
        assert ctx.context_data == {}
        assert ctx.retry_count == 0
        assert isinstance(ctx.timestamp, datetime)
        assert ctx.error_message == "test error"
        assert ctx.exception_type == "ValueError"

    def test_frozen(self):
        ctx = ErrorContext(exception=ValueError("x"), operation="op", component="c")
        with pytest.raises(Exception):
            ctx.operation = "other"


# ---------------------------------------------------------------------------
# Categorization tests
# ---------------------------------------------------------------------------


class TestCategorizeError:
    """Test exception to category mapping."""

    @pytest.fixture
    def handler(self):
        return ErrorHandler()

    @pytest.mark.parametrize(
        "exception,expected",
        [
            (ConfigurationError("missing llm"), ErrorCategory.CONFIGURATION),
            (ValidationError("bad value"), ErrorCategory.CONFIGURATION),
            (PermissionDeniedError("search"), ErrorCategory.PERMISSION),
            (PersistenceError("store down"), ErrorCategory.RESOURCE),
            (ConnectionError("refused"), ErrorCategory.NETWORK),
            (TimeoutError(), ErrorCategory.NETWORK),
            (ParseError("no json"), ErrorCategory.VALIDATION),
            (ValueError("bad"), ErrorCategory.VALIDATION),
            (KeyError("k"), ErrorCategory.VALIDATION),
            (ExecutionError("boom"), ErrorCategory.EXECUTION),
            (RuntimeError("boom"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categorize_by_type(self, handler, exception, expected):
        assert handler.categorize_error(exception) == expected

    def test_categorize_by_message_pattern(self, handler):
        assert handler.categorize_error(RuntimeError("rate limit reached")) == ErrorCategory.NETWORK
        assert handler.categorize_error(RuntimeError("cannot decode body")) == ErrorCategory.VALIDATION
        assert handler.categorize_error(RuntimeError("quota exceeded")) == ErrorCategory.RESOURCE

    def test_explicit_category_wins(self, handler):
        exc = ExecutionError("remote failed", category="network")
        assert handler.categorize_error(exc) == ErrorCategory.NETWORK

    def test_unknown_explicit_category_falls_back(self, handler):
        exc = ExecutionError("failed", category="nonsense")
        assert handler.categorize_error(exc) == ErrorCategory.EXECUTION


# ---------------------------------------------------------------------------
# handle_error tests
# ---------------------------------------------------------------------------


class TestHandleError:
    """Test retry decisions and logging."""

    @pytest.fixture
    def handler(self):
        return ErrorHandler()

    def test_returns_resolution(self, handler):
        resolution = handler.handle_error(
            RuntimeError("boom"), operation="execute", component="calc",
            retry_count=0, max_retries=3,
        )
        assert isinstance(resolution, ErrorResolution)
        assert resolution.should_retry is True
        assert resolution.max_retries == 3
        assert resolution.category == ErrorCategory.UNKNOWN

    def test_budget_exhausted(self, handler):
        resolution = handler.handle_error(
            RuntimeError("boom"), operation="execute", component="calc",
            retry_count=2, max_retries=3,
        )
        assert resolution.should_retry is False

    def test_configuration_errors_not_retried(self, handler):
        resolution = handler.handle_error(
            ConfigurationError("no llm"), operation="execute", component="agent",
            retry_count=0, max_retries=5,
        )
        assert resolution.should_retry is False
        assert resolution.category == ErrorCategory.CONFIGURATION

    def test_permission_errors_not_retried(self, handler):
        resolution = handler.handle_error(
            PermissionDeniedError("search"), operation="execute", component="agent",
            max_retries=5,
        )
        assert resolution.should_retry is False

    def test_recovery_hint_from_exception(self, handler):
        exc = ExecutionError("failed", recovery_hint="Restart the sandbox")
        resolution = handler.handle_error(exc, operation="execute", component="c")
        assert resolution.recovery_hint == "Restart the sandbox"

    def test_recovery_hint_from_policy(self, handler):
        resolution = handler.handle_error(ConnectionError("x"), operation="execute", component="c")
        assert "connectivity" in resolution.recovery_hint

    def test_retry_logs_warning(self, caplog):
        handler = ErrorHandler()
        with caplog.at_level(logging.WARNING, logger="oxyflow.core.error_handler"):
            handler.handle_error(
                RuntimeError("boom"), operation="execute", component="calc",
                retry_count=0, max_retries=3,
            )
        assert "UNKNOWN error in calc during execute: boom (retry 1)" in caplog.text
        assert caplog.records[0].levelno == logging.WARNING

    def test_final_failure_logs_error(self):
        mock_logger = MagicMock()
        handler = ErrorHandler(logger_instance=mock_logger)
        handler.handle_error(
            ValueError("bad"), operation="execute", component="calc",
            retry_count=2, max_retries=3,
        )
        mock_logger.error.assert_called_once()
        mock_logger.warning.assert_not_called()

    def test_log_disabled(self):
        mock_logger = MagicMock()
        handler = ErrorHandler(logger_instance=mock_logger)
        handler.handle_error(ValueError("bad"), operation="execute", component="c", log=False)
        mock_logger.error.assert_not_called()
        mock_logger.warning.assert_not_called()
