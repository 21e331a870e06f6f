"""
Structured logging setup for the triage workers and API.

Console rendering in debug, JSON lines otherwise. Every module logs through
``structlog.get_logger()`` with snake_case event names and key/value context.
"""
from __future__ import annotations

import logging
import sys

import structlog

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "uvicorn.access")


def configure_logging(debug: bool = False, json_logs: bool = None) -> None:
    level = logging.DEBUG if debug else logging.INFO
    if json_logs is None:
        json_logs = not debug

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
