"""Structured logging for the command gate.

Diagnostics go through structlog to stderr, as console lines or JSON, so
stdout stays free for command output and machine-readable decisions.
The audit log is a separate durable record and does not go through here.

Records written while a guarded command is handled carry ``session_id``
and ``command_id``, bound with ``log_context``.
"""

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

import structlog
from structlog.types import EventDict, Processor

if TYPE_CHECKING:
    from agentic_gate.config import GateSettings

# Commands and captured output can be arbitrarily long
MAX_FIELD_CHARS = 300


def clip_long_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten long string fields such as commands and stderr."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[key] = value[:MAX_FIELD_CHARS] + "..."
    return event_dict


def _renderer(log_format: str) -> list[Processor]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    ]


def configure_logging(settings: "GateSettings | None" = None) -> None:
    """Configure structlog from the gate settings.

    Without settings only warnings and errors are shown, as console lines.
    """
    level_name = settings.log_level if settings is not None else "warning"
    log_format = settings.log_format if settings is not None else "console"
    log_level = getattr(logging, level_name.upper(), logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            clip_long_values,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Standard-library records (pydantic, click internals) share the level
    logging.basicConfig(format="%(message)s", level=log_level, handlers=[logging.StreamHandler(sys.stderr)])


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger instance, typically with ``__name__``."""
    return structlog.get_logger(name) if name else structlog.get_logger()


@contextmanager
def log_context(**values: object) -> Iterator[None]:
    """Bind values to every log call made inside the block.

    None values are left out. The previous binding is restored on exit.

    Example:
        with log_context(session_id="a1b2", command_id="c3d4"):
            logger.info("command_denied")  # carries session_id and command_id
    """
    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield
