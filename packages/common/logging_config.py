"""
Structured logging setup shared by the API, the worker and scripts
"""
import logging

import structlog

_configured = False


def configure_logging(level: str = "INFO", fmt: str = "json", cache_loggers: bool = True) -> None:
    """
    Configure structlog once per process.

    Args:
        level: Minimum log level name (DEBUG, INFO, ...)
        fmt: "json" for machine-readable lines, "console" for local development
        cache_loggers: Freeze logger configuration on first use (off in tests
            so structlog.testing.capture_logs can intercept)
    """
    global _configured
    if _configured:
        return

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )
    _configured = True
