"""Logging configuration for Cluster Lens.

Log output goes to stderr; replay prints graphs on stdout.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from cluster_lens.config import get_settings


def setup_logging(log_level: str | None = None) -> None:
    """Configure structured logging.

    Args:
        log_level: Overrides the configured level (e.g. from the command line).
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
                if settings.is_development
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )

    # The webhook transport logs every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def observation_context(endpoint_id: str, source: str) -> Iterator[None]:
    """Bind the observed endpoint and source to every log line in the block."""
    with structlog.contextvars.bound_contextvars(endpoint_id=endpoint_id, source=source):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
