"""
Logging configuration using structlog for structured logging.

Every module logs through ``structlog.get_logger(__name__)`` with snake_case
event names. This module configures the processor pipeline once per process;
the CLI calls ``configure_logging`` from its group callback.
"""

from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines; otherwise use the console renderer
    """
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
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
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_issue_context(owner: str, repo: str, issue_number: int) -> None:
    """Attach the issue being worked on to every subsequent log line.

    Example:
        >>> bind_issue_context("octo", "demo", 42)
        >>> log.info("workflow_started")  # includes repository and issue
    """
    structlog.contextvars.bind_contextvars(repository=f"{owner}/{repo}", issue=issue_number)
