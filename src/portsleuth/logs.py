"""
Logging configuration for portsleuth.

Structured logging through structlog, rendered by the standard logging
module. Until :func:`configure_logging` is called nothing below WARNING is
emitted, so the library stays quiet when imported by other code.
"""

import logging
import sys

import structlog
from rich.console import Console
from rich.logging import RichHandler


def _processors(json_output: bool) -> list:
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def _configure_structlog(json_output: bool = False) -> None:
    structlog.configure(
        processors=_processors(json_output),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


_configure_structlog()


def configure_logging(level: str = "WARNING", json_output: bool = False) -> None:
    """
    Set up logging for the command-line tool.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Render events as JSON lines instead of key=value text.
    """
    _configure_structlog(json_output)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_output:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
        )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance by name."""
    return structlog.get_logger(name)
