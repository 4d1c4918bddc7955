"""
Structured logging for the mission kernel.

Every record under the ``mission_kernel`` logger is written as one JSON
object per line:

    {"ts": ..., "level": ..., "logger": ..., "message": "transition_rejected",
     "correlation_id": ..., "mission_id": ..., "actor_role": "TECH",
     "operation": "publish", "error_code": "FORBIDDEN"}

Context fields come from ``LogContext``.  ``WorkflowProcedures`` binds a
``correlation_id`` for each unit of work and the transition engine binds the
mission, actor, operation and idempotency key of the attempt in progress.
Fields passed through ``extra=`` win over bound context.

A kernel error attached with ``exc_info`` is rendered under ``error`` with
its ``to_dict()`` form, so a log line carries the same code and attributes
as the structured result returned to the client.
"""

from __future__ import annotations

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "new_correlation_id",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, TextIO
from uuid import UUID, uuid4

from mission_kernel.exceptions import WorkflowKernelError

_ROOT = "mission_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("mission_log_context", default=_EMPTY)


def new_correlation_id() -> str:
    return uuid4().hex


class LogContext:
    """Fields attached to every record emitted while they are bound."""

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "mission_id",
        "actor_id",
        "actor_role",
        "operation",
        "idempotency_key",
    )

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """
        Bind fields for the duration of the block; ``None`` values are skipped.

        Raises:
            TypeError: a field name outside ``FIELDS``.
        """
        unknown = sorted(set(fields) - set(cls.FIELDS))
        if unknown:
            raise TypeError(f"unknown log context field(s): {', '.join(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else on a record came from extra=
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

_HEADER = ("ts", "level", "logger", "message")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)
    return str(obj)


def _describe_error(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, WorkflowKernelError):
        return {"type": type(exc).__name__, **exc.to_dict()}
    return {"type": type(exc).__name__, "message": str(exc)}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: header, bound context, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context.get())
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in _HEADER:
                entry[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            entry["error"] = _describe_error(record.exc_info[1])
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``mission_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT}.{name}")


_lock = threading.Lock()


def _installed(root: logging.Logger) -> bool:
    return any(getattr(h, "_mission_kernel", False) for h in root.handlers)


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install the JSON handler on the ``mission_kernel`` logger.

    Calling it again is a no-op until ``reset_logging()``.  ``level`` takes
    a number or a level name such as ``"debug"``.
    """
    root = logging.getLogger(_ROOT)
    with _lock:
        if _installed(root):
            return
        out = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        out.setFormatter(StructuredFormatter())
        out._mission_kernel = True  # type: ignore[attr-defined]
        root.addHandler(out)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        root.propagate = False


def reset_logging() -> None:
    """Remove the installed handler (tests only)."""
    root = logging.getLogger(_ROOT)
    with _lock:
        for h in [h for h in root.handlers if getattr(h, "_mission_kernel", False)]:
            root.removeHandler(h)
        root.setLevel(logging.NOTSET)
        root.propagate = True
