"""structlog setup shared by the API process and the migration runner.

``LOG_FORMAT=json`` renders one JSON object per line; anything else renders
the human-friendly console format. Request-scoped values bound with
``structlog.contextvars.bind_contextvars`` are merged into every event.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()

_configured = False


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    global _configured
    if _configured:
        return

    level_name = (level or LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer: structlog.types.Processor
    if (fmt or LOG_FORMAT) == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
    _configured = True
