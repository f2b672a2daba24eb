"""Structured JSON logging for the NamLend lending core.

Every record from a ``namlend.*`` logger is rendered as one JSON object per
line. Request-scoped fields (who is calling which procedure on which
entity) live in :class:`LogContext` and are merged into each record, so
call sites only pass event-specific ``extra=`` fields.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "namlend"

_EMPTY: MappingProxyType = MappingProxyType({})
_context: ContextVar[MappingProxyType] = ContextVar("namlend_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped log fields, isolated per thread and per task.

    Only the names in ``FIELDS`` are accepted. Values are stored as
    strings; ``None`` means "leave unchanged".
    """

    FIELDS = ("correlation_id", "actor_id", "procedure", "entity_id")

    @classmethod
    def _merged(cls, fields: dict[str, Any]) -> MappingProxyType:
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **fields: Any) -> None:
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Apply ``fields`` for the duration of the block, then restore."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record. Context fields win over ``extra=``."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        out.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in out
        )
        out.update(_context.get())

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            out["exc_type"] = type(exc).__name__
            out["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                out["exc_code"] = code
            out["traceback"] = self.formatException(record.exc_info)

        return json.dumps(out, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``namlend`` logger.

    Calls after the first are no-ops until :func:`reset_logging`.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    namlend_logger = logging.getLogger(_LOGGER_PREFIX)
    namlend_logger.setLevel(level)
    namlend_logger.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    namlend_logger.addHandler(target)


def reset_logging() -> None:
    """Detach handlers and allow configure_logging() to run again. Tests only."""
    global _configured
    with _lock:
        _configured = False
    namlend_logger = logging.getLogger(_LOGGER_PREFIX)
    namlend_logger.handlers.clear()
    namlend_logger.setLevel(logging.WARNING)
