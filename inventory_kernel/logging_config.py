"""
Structured JSON logging for the inventory kernel.

Every record under the ``inventory_kernel`` logger becomes one JSON line:
an envelope (ts, level, logger, message), the stock context bound by the
caller (product, warehouse, lot, movement, actor, correlation), the
record's ``extra`` fields, and the structured attributes of any attached
ledger exception.

Quantities stay exact: Decimals are written as their string form so a
log line never rounds ``12.500`` to a float.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import IO, Any
from uuid import UUID

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "movement_id",
    "lot_number",
    "product_code",
    "warehouse_code",
)

_LOGGER_PREFIX = "inventory_kernel"

_context: ContextVar[Mapping[str, str]] = ContextVar("inventory_log_context", default={})


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


def _merge(fields: dict[str, Any]) -> dict[str, str]:
    unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
    if unknown:
        raise TypeError(f"Unknown log context fields: {', '.join(unknown)}")
    merged = dict(_context.get())
    merged.update((k, str(v)) for k, v in fields.items() if v is not None)
    return merged


class LogContext:
    """
    Stock context carried into every log line of the current thread or task.

    The whole context is one mapping in a ContextVar that is replaced,
    never mutated, so a ``bind`` block restores exactly what was there
    before it and concurrent writers never see each other's fields.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Add fields for the rest of the current context. None is ignored."""
        _context.set(_merge(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Add fields for the duration of a ``with`` block."""
        token = _context.set(_merge(fields))
        try:
            yield LogContext
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def _to_json(value: Any) -> Any:
    """Fallback for values json cannot encode natively."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # InventoryLedgerError subclasses keep their details as plain attributes
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; context and extras flattened into it."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``inventory_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def _installed(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_inventory_json", False)]


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: IO[str] | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the inventory_kernel logger.

    A second call while a JSON handler is attached changes nothing, so
    library entry points can call this freely.  ``level`` takes a number
    or a name such as ``"debug"``.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    if _installed(root):
        return
    if isinstance(level, str):
        level = logging.getLevelNamesMapping()[level.upper()]

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    target._inventory_json = True
    root.addHandler(target)
    root.setLevel(level)
    root.propagate = False


def reset_logging() -> None:
    """Detach the JSON handler and fall back to WARNING. Used by tests."""
    root = logging.getLogger(_LOGGER_PREFIX)
    for h in _installed(root):
        root.removeHandler(h)
    root.setLevel(logging.WARNING)
