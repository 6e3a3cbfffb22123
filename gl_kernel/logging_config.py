"""
Structured JSON logging for the posting kernel.

Every record leaving the ``gl_kernel`` hierarchy is one JSON object per
line: a fixed envelope (ts, level, logger, message), the request fields
bound in ``LogContext``, the record's ``extra`` fields, and, for records
logged with ``exc_info``, the structured attributes of the exception.

``gl_kernel.audit`` is an ordinary child logger.  Services write decision
records (journal written, approval recorded, tax degraded) to it in
addition to their own logger so the audit trail can be routed separately.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "get_audit_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

ROOT_LOGGER_NAME = "gl_kernel"
AUDIT_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.audit"

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("gl_log_context", default=_EMPTY)


class LogContext:
    """
    Request-scoped fields merged into every log record.

    Held in a single ContextVar as an immutable mapping, so concurrent
    requests (threads or tasks) never see each other's fields.
    """

    FIELDS = (
        "correlation_id",
        "tenant_id",
        "company_id",
        "actor_id",
        "entry_id",
        "idempotency_key",
    )

    @classmethod
    def _merged(cls, values: Mapping[str, Any]) -> Mapping[str, str]:
        current = dict(_context.get())
        for name, value in values.items():
            if name in cls.FIELDS and value is not None:
                current[name] = str(value)
        return MappingProxyType(current)

    @classmethod
    def set(
        cls,
        *,
        correlation_id: str | None = None,
        tenant_id: str | None = None,
        company_id: str | None = None,
        actor_id: str | None = None,
        entry_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        """Update the given fields; None leaves a field as it is."""
        _context.set(cls._merged({
            "correlation_id": correlation_id,
            "tenant_id": tenant_id,
            "company_id": company_id,
            "actor_id": actor_id,
            "entry_id": entry_id,
            "idempotency_key": idempotency_key,
        }))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """
        Set fields for the duration of a ``with`` block.

        Unknown names are ignored; values are stringified (UUIDs arrive
        from the ORM).
        """
        return _BoundContext(cls._merged(fields))


class _BoundContext:
    def __init__(self, fields: Mapping[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(self._fields)
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = self._envelope(record)
        payload.update(LogContext.get_all())
        self._add_extra(record, payload)
        if record.exc_info and record.exc_info[1] is not None:
            self._add_exception(record, payload)
        return json.dumps(payload, default=_to_json)

    @staticmethod
    def _envelope(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _add_extra(record: logging.LogRecord, payload: dict[str, Any]) -> None:
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

    def _add_exception(self, record: logging.LogRecord, payload: dict[str, Any]) -> None:
        exc = record.exc_info[1]
        payload["exc_type"] = type(exc).__name__
        payload["exc_message"] = str(exc)
        code = getattr(exc, "code", None)
        if code is not None:
            payload["exc_code"] = code
        # LedgerError subclasses keep their context as public attributes
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in ("args", "code"):
                payload[f"exc_{name}"] = value
        payload["traceback"] = self.formatException(record.exc_info)


# ---------------------------------------------------------------------------
# Loggers
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.posting")`` -> ``gl_kernel.services.posting``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)


_setup_lock = threading.Lock()
_setup_done = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``gl_kernel`` logger.

    Safe to call repeatedly; only the first call has an effect until
    ``reset_logging`` is called.
    """
    global _setup_done
    with _setup_lock:
        if _setup_done:
            return
        _setup_done = True

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Remove handlers and allow ``configure_logging`` again (tests)."""
    global _setup_done
    with _setup_lock:
        _setup_done = False
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
