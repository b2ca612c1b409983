"""
Structured logging configuration using structlog.

Every module logs snake_case events with keyword context, e.g.
``logger.info("source_settled", source="twitter-0", items=12)``. Logs are
written to stderr; stdout belongs to the rendered view.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog
from structlog.types import Processor

# HTTP client libraries log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore")


def _final_processors(json_output: bool) -> list[Processor]:
    if json_output:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structured logging for the funnel.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output logs as JSON lines
    """
    numeric_level = getattr(logging, level.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    processors += _final_processors(json_output)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a logger, bound to ``name`` (usually ``__name__``) when given.
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger


@contextmanager
def log_context(**kwargs) -> Iterator[None]:
    """
    Bind ``kwargs`` to every log entry emitted inside the block.

    The previous context is restored on exit.
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
