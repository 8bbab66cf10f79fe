"""structlog setup."""

import logging
import sys
from typing import TextIO

import structlog

_log_stream: TextIO | None = None


def configure_logging(level: str = "WARNING", log_file: str | None = None) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Minimum level name, e.g. 'DEBUG' or 'WARNING'.
        log_file: Append logs here instead of stderr. The terminal UI owns
            stdout, so stdout is never used.
    """
    global _log_stream

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.WARNING

    if _log_stream is not None and _log_stream is not sys.stderr:
        _log_stream.close()
    _log_stream = open(log_file, "a", encoding="utf-8") if log_file else sys.stderr

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=log_file is None),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=_log_stream),
        cache_logger_on_first_use=False,
    )
