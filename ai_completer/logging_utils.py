"""
Centralized logging and error handling utilities for the AI completer.

This module provides decorators and helper functions to standardize logging
and error classification across the client, the settings store and the CLI.

Features:
- Structured logging with contextual information
- Error category classification for rewrite failures
- Performance timing on async operations
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from .llm.exceptions import (
    ConfigurationError,
    CredentialError,
    EmptyResponseError,
    ProtocolError,
    RewriteError,
    TransportError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)


def configure_logging(level: str | int = "INFO") -> None:
    """Set the stdlib root level that structlog filters against."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)


class RewriteErrorHandler:
    """Error classification for structured logs and user-facing status."""

    @staticmethod
    def classify_error(error: Exception) -> str:
        """
        Classify an error into a stable category string.

        Args:
            error: The exception to classify

        Returns:
            Error category name
        """
        if isinstance(error, ConfigurationError):
            return "configuration_error"
        if isinstance(error, CredentialError):
            return "credential_error"
        if isinstance(error, EmptyResponseError):
            return "empty_response"
        if isinstance(error, ProtocolError):
            return "protocol_error"
        if isinstance(error, TransportError):
            return "transport_error"
        if isinstance(error, RewriteError):
            return "rewrite_error"
        if isinstance(error, ValidationError):
            return "validation_error"
        if isinstance(error, TimeoutError | httpx.TimeoutException):
            return "timeout_error"
        if isinstance(error, ConnectionError | OSError | httpx.TransportError):
            return "connection_error"
        if isinstance(error, ValueError | TypeError):
            return "parameter_error"
        return "unknown_error"

    @staticmethod
    def is_informational(error: Exception) -> bool:
        """Empty responses are reported to the user without alarm."""
        return isinstance(error, EmptyResponseError)


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


def _log_failure(operation_logger: Any, error: Exception, start_time: float) -> None:
    """Log a failed operation; empty responses are not reported as errors."""
    error_log_data: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_category": RewriteErrorHandler.classify_error(error),
        "error_message": str(error),
        "duration_ms": _elapsed_ms(start_time),
    }
    if RewriteErrorHandler.is_informational(error):
        operation_logger.info("Operation returned no content", **error_log_data)
    else:
        operation_logger.error("Operation failed", **error_log_data)


def log_operation(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context and timing.

    Args:
        operation: Description of the operation being performed
        context: Additional context to include in logs

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
                **(context or {}),
            )

            operation_logger.info("Operation started")
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_failure(operation_logger, e, start_time)
                raise

            operation_logger.info(
                "Operation completed successfully", duration_ms=_elapsed_ms(start_time)
            )
            return result

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
):
    """
    Async context manager for operation logging.

    Args:
        operation: Description of the operation
        context: Additional context for logging

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.info("Operation started")
    start_time = time.perf_counter()

    try:
        yield operation_logger
    except Exception as e:
        _log_failure(operation_logger, e, start_time)
        raise

    operation_logger.info(
        "Operation completed successfully", duration_ms=_elapsed_ms(start_time)
    )


class ContextualLogger:
    """Logger that maintains context across related operations."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = base_context or {}
        self._logger = logger.bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        """Create a new logger with additional context."""
        merged_context = {**self.base_context, **context}
        return ContextualLogger(merged_context)

    def warning(self, message: str, **context: Any) -> None:
        self._logger.warning(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(message, **context)
