"""Structured logging for the fetcher, the filer and the CLI.

Log lines go to stderr so the CLI's rich tables on stdout stay clean. JSON is
the default; ``json_output=False`` switches to structlog's console renderer
for interactive runs.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List

import structlog

DEFAULT_LOG_LEVEL = "INFO"

_configured = False


def _processors(json_output: bool) -> List[Any]:
    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(level: str = DEFAULT_LOG_LEVEL, force: bool = False, json_output: bool = True) -> None:
    """Set up stdlib + structlog once per process.

    Later calls are no-ops unless ``force`` is set; the CLI forces a
    reconfigure after reading ``--log-level``.
    """
    global _configured
    if _configured and not force:
        return

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level, force=force)
    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    configure_logging()
    logger = structlog.get_logger(name)
    return logger.bind(**initial_values) if initial_values else logger


__all__ = ["configure_logging", "get_logger"]
