"""
Logging configuration using structlog for structured, JSON-based logging.

This module provides centralized logging setup for the scheduler, the worker
and the CLI, with support for contextual logging and structured output.
"""

import structlog


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging with JSON output.

    Sets up structlog with a pipeline of processors for structured logs that
    include timestamps, log levels, stack traces and contextual information.
    Bound context (``structlog.contextvars.bind_contextvars``) is merged into
    every event, which the worker uses to tag events with the item id.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

