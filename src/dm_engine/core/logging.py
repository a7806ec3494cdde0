"""Structured logging for the DM turn engine.

Every module logs through structlog. Turn-scoped identifiers
(``campaign_id``, ``turn_number``) are carried in contextvars so tool,
memory and background logs of the same turn line up. Output is a
console renderer when ``debug`` is on and JSON lines otherwise; the
openai/httpx stdlib loggers share the same level and destination.

Example:
    >>> from dm_engine.core.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Executing tool", tool="roll_attack", campaign_id=3)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor

from dm_engine.core.config import Settings, get_settings


if TYPE_CHECKING:
    from structlog.types import EventDict, WrappedLogger


APP_NAME = "dm_engine"

STDLIB_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# HTTP clients used by the chat and embedding calls log each request at INFO.
CLIENT_LOGGERS = ("openai", "httpx", "httpcore")


def add_app_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Tag every log entry with the application name."""
    event_dict["app"] = APP_NAME
    return event_dict


def enum_values(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Log enums (turn phases, event types, memory types) by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_logging(
    settings: Settings | None = None,
    *,
    level: str | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Configure structlog and the stdlib loggers it shares output with.

    Args:
        settings: Application settings; ``log_level`` and ``debug`` supply
            the defaults. Loaded with ``get_settings()`` when omitted and
            either default is needed.
        level: Overrides ``settings.log_level``.
        json_format: Overrides the JSON-unless-debug choice.
        log_file: Optional file that also receives stdlib log records.
    """
    if level is None or json_format is None:
        settings = settings or get_settings()
        level = level or settings.log_level
        json_format = settings.is_production if json_format is None else json_format

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    renderer: Processor
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_app_context,
            enum_values,
            structlog.processors.format_exc_info if json_format else structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(format=STDLIB_FORMAT, level=log_level, handlers=handlers, force=True)

    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger, usually with ``__name__``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind key/values to every later log entry on this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind context variables for the duration of a block only.

    Used around a single turn so that campaign and turn identifiers do
    not leak into logs from the next request handled by the same thread.
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "log_context",
    "add_app_context",
    "enum_values",
]
