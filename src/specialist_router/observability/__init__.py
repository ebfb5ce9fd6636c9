"""Public observability primitives: structured logging and event streaming."""

from specialist_router.observability.events import DispatchError, EventBus, Subscriber
from specialist_router.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    configure_structlog,
    configure_structlog_console,
    correlation_scope,
    default_log_redactor,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "Subscriber",
    "configure_structlog",
    "configure_structlog_console",
    "correlation_scope",
    "default_log_redactor",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
