"""Structlog setup for the verification side (scheduler, verifier, cache).

Events are snake_case names with key/value context, e.g.
    logger.info("claim_verified", claim_id="c1", attempts=2)

A scheduling batch can bind its id into the context of every task it spawns
with batch_context(); pipeline tasks copy the context when they are created.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, merge_contextvars, unbind_contextvars

from narrative_research.config.settings import settings


def configure_structured_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog processors and renderer.

    - Console renderer on a TTY with LOG_FORMAT=console
    - JSON lines otherwise
    """
    level_name = (level or settings.log_level).upper()
    processors = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if sys.stderr.isatty() and settings.log_format.lower() == "console":
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_structured_logger(
    name: str,
    session_id: Optional[str] = None,
    **additional_context: Any,
) -> structlog.BoundLogger:
    """
    Structured logger with bound context.

    Example:
        >>> logger = get_structured_logger(__name__, component="VerificationScheduler")
        >>> logger.info("claims_scheduled", scheduled=5)
    """
    logger = structlog.get_logger(name)
    if session_id:
        logger = logger.bind(session_id=session_id)
    if additional_context:
        logger = logger.bind(**additional_context)
    return logger


def get_correlation_id() -> str:
    """Generate an id for one scheduling batch."""
    return str(uuid.uuid4())


@contextmanager
def batch_context(batch_id: str) -> Iterator[str]:
    """Bind batch_id to every event logged (and every task created) inside the block."""
    bind_contextvars(batch_id=batch_id)
    try:
        yield batch_id
    finally:
        unbind_contextvars("batch_id")


configure_structured_logging()


__all__ = [
    "batch_context",
    "configure_structured_logging",
    "get_correlation_id",
    "get_structured_logger",
]
