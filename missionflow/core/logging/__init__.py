"""Structured logging for the progression engine."""

from missionflow.core.logging.logger import (
    LogContext,
    get_log_context,
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LogContext",
    "get_log_context",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
]
