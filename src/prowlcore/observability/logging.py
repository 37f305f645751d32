"""
Configures structured logging for prowlcore using structlog.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import structlog

if TYPE_CHECKING:
    from prowlcore.config.config import LoggingConfig

DEBUG_ENV = "PROWL_DEBUG"

# --- Custom Processors ---


def add_request_id(logger: logging.Logger, method_name: str, event_dict: Dict[Any, Any]) -> Dict[Any, Any]:
    """
    Adds the id of the request being processed, if one is bound in the context.
    """
    from structlog.contextvars import get_contextvars

    ctx = get_contextvars()
    if "request_id" in ctx and "request_id" not in event_dict:
        event_dict["request_id"] = ctx["request_id"]
    return event_dict


def _console_renderer() -> Any:
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


# --- Configuration ---


def configure_logging(config: Optional[LoggingConfig]) -> None:
    """
    Sets up structlog to handle all logging for the library.

    With no config, logging is left untouched unless ``PROWL_DEBUG`` is set,
    in which case a DEBUG console logger is installed.
    """
    if config is None:
        if not os.environ.get(DEBUG_ENV):
            return
        level = "DEBUG"
        sink = "console"
        log_file = None
    else:
        level = config.level
        sink = config.sink
        log_file = config.file

    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    handlers: List[logging.Handler] = []
    if sink in ("console", "both"):
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=_console_renderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(console)
    if sink in ("file", "both"):
        if log_file is None:
            raise ValueError(f"logging sink {sink!r} requires a file")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(file_handler)

    root = logging.getLogger("prowlcore")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("prowlcore.logging")
    logger.info("Logging configured", level=level, sink=sink, output=str(log_file) if log_file else "console")
