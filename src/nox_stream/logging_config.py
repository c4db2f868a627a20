"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Chatty at INFO; raised to at least WARNING
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "aiosqlite", "uvicorn.access")

# uvicorn installs its own handlers; strip them so records reach the root handler
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_PACKAGE = "nox_stream"


def add_component(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Tag records from this package with the subpackage that logged them.

    ``nox_stream.synthesis.manager`` becomes ``component=synthesis``. A
    ``component`` already bound through ``structlog.contextvars`` wins.
    """
    name = event_dict.get("logger") or ""
    if name.startswith(_PACKAGE + "."):
        event_dict.setdefault("component", name.split(".")[1])
    return event_dict


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route all stdlib logging through structlog's formatter.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Emit JSON lines (for log shippers) instead of console output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_component,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _UVICORN_LOGGERS:
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))
