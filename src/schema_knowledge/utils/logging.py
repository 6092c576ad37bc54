"""
Logging Utility Module for the Schema Knowledge Engine
Provides structured logging with correlation IDs and per-database context
"""
from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Generator, Optional

# Context is per asyncio task, not per thread: builders for several
# databases interleave on one event loop.
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_database_id: ContextVar[Optional[str]] = ContextVar("database_id", default=None)
_operation: ContextVar[Optional[str]] = ContextVar("operation", default=None)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = _correlation_id.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        database_id = _database_id.get()
        if database_id:
            log_entry["database_id"] = database_id

        operation = _operation.get()
        if operation:
            log_entry["operation"] = operation

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter for development"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)

        prefix_parts = []
        correlation_id = _correlation_id.get()
        if correlation_id:
            prefix_parts.append(f"[{correlation_id[:8]}]")

        database_id = _database_id.get()
        if database_id:
            prefix_parts.append(f"[db:{database_id}]")

        prefix = " ".join(prefix_parts)
        if prefix:
            prefix = f"{prefix} "

        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        formatted = (
            f"{color}{timestamp} | {record.levelname:8s}{self.RESET} | "
            f"{record.name:40s} | {prefix}{record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that includes context information"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})

        if _correlation_id.get():
            extra['correlation_id'] = _correlation_id.get()
        if _database_id.get():
            extra['database_id'] = _database_id.get()
        if _operation.get():
            extra['operation'] = _operation.get()

        kwargs['extra'] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (for production)
        log_file: Optional file path for logging
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if json_format:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for logger_name in ['asyncio', 'sqlparse']:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger"""
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, {})


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID for the current task"""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get correlation ID for the current task"""
    return _correlation_id.get()


def get_database_id() -> Optional[str]:
    """Get the database id bound to the current task"""
    return _database_id.get()


@contextmanager
def log_context(
    correlation_id: Optional[str] = None,
    database_id: Optional[str] = None,
    operation: Optional[str] = None
) -> Generator[None, None, None]:
    """
    Context manager for setting logging context

    Usage:
        with log_context(database_id="42", operation="learn_from_query"):
            logger.info("Processing query")
    """
    tokens = []
    if correlation_id:
        tokens.append((_correlation_id, _correlation_id.set(correlation_id)))
    if database_id:
        tokens.append((_database_id, _database_id.set(database_id)))
    if operation:
        tokens.append((_operation, _operation.set(operation)))

    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


@contextmanager
def log_operation(
    logger: ContextLogger,
    operation: str,
    **extra_fields: Any
) -> Generator[Dict[str, Any], None, None]:
    """
    Context manager for logging operation timing

    Usage:
        with log_operation(logger, "schema_extraction", database_id="42") as ctx:
            snapshot = await extract()
            ctx['tables'] = len(snapshot.tables)
    """
    start_time = time.time()
    context: Dict[str, Any] = {"operation": operation, **extra_fields}

    logger.debug(f"Starting {operation}", extra={"extra_fields": context})

    try:
        yield context
        elapsed = time.time() - start_time
        context['duration_ms'] = round(elapsed * 1000, 2)
        context['status'] = 'success'
        logger.info(f"Completed {operation}", extra={"extra_fields": context})
    except Exception as e:
        elapsed = time.time() - start_time
        context['duration_ms'] = round(elapsed * 1000, 2)
        context['status'] = 'error'
        context['error'] = str(e)
        context['error_type'] = type(e).__name__
        logger.error(f"Failed {operation}", extra={"extra_fields": context}, exc_info=True)
        raise
