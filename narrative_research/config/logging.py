"""Loguru setup for the research side (job store, executor, poller, CLI)."""

import sys
from typing import Optional, TextIO

from loguru import logger

from narrative_research.config.settings import settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | <level>{message}</level>"
)


def configure_logging(level: Optional[str] = None, sink: Optional[TextIO] = None) -> None:
    """
    Configure loguru from settings.

    Console format (colorized) is used on a TTY when LOG_FORMAT=console;
    otherwise records are serialized as JSON, one per line.

    Args:
        level: Overrides LOG_LEVEL (the CLI's --verbose / --quiet)
        sink: Output stream; defaults to stderr so CLI output on stdout
              stays clean
    """
    logger.remove()
    logger.configure(extra={"component": "narrative_research"})

    stream = sink or sys.stderr
    level = (level or settings.log_level).upper()
    use_console = settings.log_format.lower() == "console" and stream.isatty()

    if use_console:
        logger.add(stream, format=CONSOLE_FORMAT, level=level, colorize=True)
    else:
        logger.add(
            stream,
            format="{message}",
            level=level,
            serialize=True,
            diagnose=False,
        )


def get_logger(component: str):
    """
    Logger bound to a component name.

    Example:
        >>> log = get_logger("cli")
        >>> log.info("Submitting research", depth="deep")
    """
    return logger.bind(component=component)


configure_logging()

__all__ = ["logger", "get_logger", "configure_logging"]
