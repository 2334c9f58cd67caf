"""Structured JSON logging for the registry kernel and batch jobs.

Every record under the ``registry_kernel`` logger becomes one JSON object
per line.  The object carries a fixed envelope (``ts``, ``level``,
``logger``, ``message``), whatever ``LogContext`` fields are bound in the
current context, the record's ``extra`` values and, for failures, the
exception's type, message, code and public attributes.
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
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"registry_log_{name}", default=None)
    for name in ("correlation_id", "actor_id", "request_id", "job_name")
}


class LogContext:
    """Request-scoped and job-scoped fields stamped onto every log line."""

    @staticmethod
    def set(
        *,
        correlation_id: str | None = None,
        actor_id: str | None = None,
        request_id: str | None = None,
        job_name: str | None = None,
    ) -> None:
        """Set context fields. None leaves a field as it is."""
        values = {
            "correlation_id": correlation_id,
            "actor_id": actor_id,
            "request_id": request_id,
            "job_name": job_name,
        }
        for name, value in values.items():
            if value is not None:
                _CONTEXT_VARS[name].set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        bound = {name: var.get() for name, var in _CONTEXT_VARS.items()}
        return {name: value for name, value in bound.items() if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block.

        Unknown names and None values are skipped.  On exit every field is
        restored to what it was before, including None.
        """
        tokens = []
        for name, value in fields.items():
            var = _CONTEXT_VARS.get(name)
            if var is None or value is None:
                continue
            tokens.append((var, var.set(str(value))))
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RESERVED_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    # UUID, Decimal and anything else unknown to json
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """type, message, ``code`` and public attributes of a raised error."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_RECORD_KEYS
        }
        for key, value in extras.items():
            payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "registry_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the registry_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the registry_kernel logger.

    Only the first call after import (or after ``reset_logging``) has any
    effect.  Records do not propagate to the root logger.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(handler)


def reset_logging() -> None:
    """Forget the configuration and drop every handler. Tests only."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
