# src/waypoint/core/logging.py
"""Log setup for the CLI and the HTTP server.

Waypoint logs through structlog, while uvicorn, SQLAlchemy and httpx log
through the stdlib. Both end up on one stdout handler, so a ``--json-logs``
run yields one JSON object per line whichever side produced it.

While a task runs, :func:`task_log_context` binds its id into the
contextvars, so a pool warning raised under a step is attributable to
the task just like the runner's own lines.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Chatty at DEBUG; held at WARNING or above.
_LIBRARY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "uvicorn.access",
    "asyncio",
)

_FORMATTER_KEYS = ("_record", "_from_structlog")


def _strip_formatter_keys(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key in _FORMATTER_KEYS:
        del event_dict[key]
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _render_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _strip_formatter_keys,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        _strip_formatter_keys,
        structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
    ]


def _hold_library_loggers(root_level: int) -> None:
    held = max(root_level, logging.WARNING)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(held)


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib records through one stdout handler.

    Safe to call again; each call replaces the root handlers.
    """
    root_level = getattr(logging, level.upper())
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(root_level)
    _hold_library_loggers(root_level)


@contextmanager
def task_log_context(task_id: str) -> Iterator[None]:
    """Tag every record emitted on this thread with ``task_id`` until exit."""
    with structlog.contextvars.bound_contextvars(task_id=task_id):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
