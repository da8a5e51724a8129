"""
Structured Logging

One JSON object per line. Besides the correlation id (one per HTTP request
or Celery task run), a line carries the dispatch context bound with
``log_context()``, so every line written while a delivery is being assigned
or settled names that delivery, its courier and the wallet involved.
"""
import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from functools import wraps
from typing import Any, Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
log_context_var: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Keys log_context() accepts; anything else belongs in extra_data
CONTEXT_KEYS = ("delivery_id", "order_id", "courier_id", "wallet_id", "message_id", "task")

_service_name = "pharma-dispatch"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "service": _service_name,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        context = log_context_var.get()
        if context:
            entry["context"] = context

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["data"] = extra_data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
            entry["origin"] = f"{record.module}.{record.funcName}:{record.lineno}"

        return json.dumps(entry, ensure_ascii=False, default=_json_default)


class TextFormatter(logging.Formatter):
    """Readable single-line format for DEBUG runs and operator scripts"""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s [%(cid)s]%(ctx)s %(message)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.cid = correlation_id_var.get() or "-"
        context = log_context_var.get()
        record.ctx = "".join(f" {k}={v}" for k, v in context.items()) if context else ""
        line = super().format(record)
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            line += " " + json.dumps(extra_data, ensure_ascii=False, default=_json_default)
        return line


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept ``extra_data={...}``"""

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False,
             stacklevel=1, extra_data: dict[str, Any] | None = None):
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        super()._log(level, msg, args, exc_info=exc_info, extra=extra,
                     stack_info=stack_info, stacklevel=stacklevel + 1)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "pharma-dispatch"
) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Logging level name
        json_format: JSON lines (production) or the text format (DEBUG, scripts)
        app_name: Service name stamped on every JSON line
    """
    global _service_name
    _service_name = app_name

    numeric_level = getattr(logging, level.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else TextFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation id for the current request or task, generating one if missing"""
    cid = correlation_id or uuid.uuid4().hex[:12]
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    cid = correlation_id_var.get()
    return cid or set_correlation_id()


@contextmanager
def log_context(**ids: Any) -> Iterator[dict[str, Any]]:
    """
    Bind dispatch identifiers to every log line written inside the block.

    Nested blocks add to (and may override) the outer context; ``None``
    values are dropped.
    """
    unknown = set(ids) - set(CONTEXT_KEYS)
    if unknown:
        raise ValueError(f"Unsupported log context keys: {sorted(unknown)}")

    merged = {**log_context_var.get(), **{k: v for k, v in ids.items() if v is not None}}
    token = log_context_var.set(merged)
    try:
        yield merged
    finally:
        log_context_var.reset(token)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """Log start, completion (with duration) and failure of an async operation"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()
            logger.debug(f"{operation_name} started", extra_data={"operation": operation_name})

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation_name} failed",
                    extra_data={
                        "operation": operation_name,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                        "error": str(e),
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"{operation_name} completed",
                extra_data={
                    "operation": operation_name,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                }
            )
            return result

        return wrapper
    return decorator
