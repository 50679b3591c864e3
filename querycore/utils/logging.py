"""Logging helpers for querycore.

Every module logs through :func:`get_logger`, which namespaces loggers under
``querycore`` and attaches :class:`CorrelationIDFilter`. A request binds its
correlation ID with :func:`correlation_scope` (usually through
:meth:`querycore.service.QueryService.request`); every query, cache and
invalidation line logged while the scope is active carries that ID.

Applications that want JSON log lines install :class:`StructuredFormatter`
with :func:`configure_logging`.
"""

import logging
import sys
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from typing import IO, Any, Final, Optional

from querycore.utils.serializers import to_json

__all__ = (
    "ROOT_LOGGER_NAME",
    "CorrelationIDFilter",
    "StructuredFormatter",
    "configure_logging",
    "correlation_id_var",
    "correlation_scope",
    "get_correlation_id",
    "get_logger",
    "log_with_context",
    "set_correlation_id",
)

ROOT_LOGGER_NAME: Final = "querycore"
SIMPLE_FORMAT: Final = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

correlation_id_var: "ContextVar[Optional[str]]" = ContextVar("querycore_correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Bind ``correlation_id`` to the current context until changed. ``None`` clears it."""
    correlation_id_var.set(correlation_id)


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a ``with`` block.

    The previous ID is restored on exit, so scopes nest. Each asyncio task
    runs in a copy of its creator's context, so concurrent requests never
    see each other's IDs.

    Args:
        correlation_id: ID to bind. A random one is generated when omitted.

    Yields:
        The bound ID.
    """
    bound = correlation_id or uuid.uuid4().hex
    token = correlation_id_var.set(bound)
    try:
        yield bound
    finally:
        correlation_id_var.reset(token)


class CorrelationIDFilter(logging.Filter):
    """Stamp each record with the active correlation ID (``"-"`` when none is bound)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line.

    Fields passed through :func:`log_with_context` are merged into the
    object, after the fixed ``timestamp``, ``level``, ``logger`` and
    ``message`` keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = get_correlation_id()
        if correlation_id is not None:
            entry["correlation_id"] = correlation_id
        entry.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return to_json(entry)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the ``querycore`` logger, or a child of it.

    Args:
        name: Dotted name below ``querycore``. A name already starting with
            ``querycore`` is used as is.
    """
    if name is None:
        full_name = ROOT_LOGGER_NAME
    elif name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        full_name = name
    else:
        full_name = f"{ROOT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(full_name)
    if not any(isinstance(existing, CorrelationIDFilter) for existing in logger.filters):
        logger.addFilter(CorrelationIDFilter())
    return logger


def configure_logging(
    level: "int | str" = logging.INFO,
    *,
    structured: bool = True,
    stream: "Optional[IO[str]]" = None,
    handlers: "Sequence[logging.Handler]" = (),
) -> logging.Logger:
    """Send querycore's log lines to ``stream`` (stdout by default).

    Calling it again replaces the handlers installed by the previous call.
    querycore records stop propagating to the root logger.

    Args:
        level: Level name or number for the ``querycore`` logger.
        structured: Emit JSON lines through :class:`StructuredFormatter`
            instead of plain text.
        stream: Stream for the console handler.
        handlers: Further handlers to attach as they are.

    Returns:
        The configured ``querycore`` logger.
    """
    root = get_logger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers.clear()

    console = logging.StreamHandler(stream or sys.stdout)
    console.setFormatter(StructuredFormatter() if structured else logging.Formatter(SIMPLE_FORMAT))
    console.addFilter(CorrelationIDFilter())
    root.addHandler(console)
    for handler in handlers:
        root.addHandler(handler)
    root.propagate = False

    log_with_context(root, logging.DEBUG, "Logging configured", structured=structured, handlers=len(root.handlers))
    return root


def log_with_context(logger: logging.Logger, level: int, message: str, **fields: Any) -> None:
    """Log ``message`` with ``fields`` attached for :class:`StructuredFormatter`.

    Nothing is built when ``level`` is disabled for ``logger``.
    """
    if logger.isEnabledFor(level):
        logger.log(level, message, extra={"extra_fields": fields})
