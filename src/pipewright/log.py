"""
pipewright.log - Structured Logging Setup
===========================================

Every module logs through ``structlog.get_logger()`` with event-style names
(``job_started``, ``stage_completed``, ...). This module configures where
those events go and at which level.

    configure_logging("DEBUG")                  # console, colored
    configure_logging("INFO", json_format=True) # one JSON object per line

Log output goes to stderr, keeping stdout free for command output.
"""

from __future__ import annotations

import logging
import sys
from typing import Union

import structlog


def _level_number(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return number


def configure_logging(level: Union[str, int] = "INFO", json_format: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level, as a name ("DEBUG") or number.
        json_format: Render JSON instead of console output.

    Raises:
        ValueError: If ``level`` is not a known level name.
    """
    number = _level_number(level)

    # The run archive logs through stdlib logging.
    logging.basicConfig(level=number, format="%(message)s", stream=sys.stderr, force=True)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(number),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
