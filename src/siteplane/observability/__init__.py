"""Structured run logs and the correlation fields stamped onto them."""

from siteplane.observability.logging import (
    CORRELATION_KEYS,
    LOG_FILENAME,
    LoggingHandle,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    redact,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "CORRELATION_KEYS",
    "LOG_FILENAME",
    "LoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "shutdown_logging",
]
