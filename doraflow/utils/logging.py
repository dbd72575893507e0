"""
Structured logging utilities with JSON formatting and context injection.

This module provides structured logging capabilities with:
- JSON formatted log output for machine-readable logs
- Context injection (project, repository, run_id, step) via LoggerAdapter
- Standardized log fields across ingestion, detection and metrics code
- Integration with Python's standard logging module
"""

import logging
import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, MutableMapping
from logging import LogRecord


# Context fields promoted to the top level of every JSON record
CONTEXT_FIELDS = ("project", "repository", "run_id", "step")

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with standard fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - project/repository/run_id/step: Ingestion context, when present
    - context: Any other extra fields
    - error: Error details (when exc_info is attached)
    """

    def format(self, record: LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in CONTEXT_FIELDS
        }
        if extra_fields:
            log_data["context"] = extra_fields

        if record.exc_info:
            log_data["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack_trace": "".join(traceback.format_exception(*record.exc_info))
            }

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName
        }

        return json.dumps(log_data, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that injects context fields into all log records.

    Context set on the adapter (project, repository, ...) is merged into the
    ``extra`` of every call; per-call extras win over adapter context.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """
        Create a new logger adapter with additional context.

        Args:
            **context: Additional context fields

        Returns:
            New logger adapter with merged context
        """
        new_extra = dict(self.extra)
        new_extra.update(context)
        return ContextLoggerAdapter(self.logger, new_extra)


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Sets up:
    - JSON formatter on a stdout handler
    - Root logger level
    - Quieter third-party loggers

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    formatter = JSONFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    for noisy in ("urllib3", "azure", "msrest", "aiosqlite", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Get a context-aware logger for a module.

    Example:
        logger = get_logger(__name__, project="Payments")
        logger.info("Fetching pull requests")  # record carries project="Payments"
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)


def log_api_call(
    logger: logging.LoggerAdapter,
    service: str,
    endpoint: str,
    duration_ms: Optional[float] = None,
    attempt: Optional[int] = None,
    error: Optional[str] = None
) -> None:
    """
    Log an upstream API call with timing and outcome.

    Args:
        logger: Logger to use
        service: Service name (e.g., 'azure_devops')
        endpoint: SDK operation name (e.g., 'get_pull_requests')
        duration_ms: Call duration in milliseconds (if available)
        attempt: 1-based attempt number (if retried)
        error: Error message (if the call failed)
    """
    extra: Dict[str, Any] = {
        "service": service,
        "endpoint": endpoint,
    }
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)
    if attempt is not None:
        extra["attempt"] = attempt
    if error is not None:
        extra["error"] = error

    if error:
        logger.warning(f"API call failed: {endpoint}", extra=extra)
    else:
        logger.debug(f"API call: {endpoint}", extra=extra)


def log_step(
    logger: logging.LoggerAdapter,
    step: str,
    status: str,
    duration_ms: float,
    error: Optional[str] = None
) -> None:
    """Log completion of an instrumented step; slow steps (over 10s) are warnings."""
    extra = {"step": step, "status": status, "duration_ms": round(duration_ms, 2)}
    if error is not None:
        extra["error"] = error
        logger.error(f"Step {step} {status} after {duration_ms:.0f}ms", extra=extra)
    elif duration_ms > 10000:
        logger.warning(f"Step {step} completed slowly in {duration_ms / 1000:.2f}s", extra=extra)
    else:
        logger.info(f"Step {step} completed in {duration_ms:.0f}ms", extra=extra)


def log_error_with_context(
    logger: logging.LoggerAdapter,
    message: str,
    error: Exception,
    **context: Any
) -> None:
    """
    Log error with full stack trace and context.

    Args:
        logger: Logger to use
        message: Error message
        error: Exception object
        **context: Additional context fields
    """
    context.setdefault("error_type", type(error).__name__)
    logger.error(
        f"{message}: {error}",
        extra=context,
        exc_info=error
    )
