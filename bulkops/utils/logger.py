"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars


def _stderr_logger_factory(*_args: Any) -> structlog.PrintLogger:
    # Resolved per logger so a swapped sys.stderr (click's test runner) is honored
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog to write to stderr at the given level.

    Console rendering by default; pass json_output for machine-readable lines.
    """
    level = logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)

    processors: list[Any] = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger_factory,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger bound to the given module name."""
    return structlog.get_logger(name)
