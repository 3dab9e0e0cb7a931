"""
Unified logging for the assistantrelay package.

Every module obtains its logger through ``get_logger`` so that output shares
one format (JSON by default, plain text with ``LOG_FORMAT=text``) and carries a
request id that can be used to stitch together the create call, the poll loop
and the fallback cascade of a single assistant reply.

Usage:
    from assistantrelay.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Prediction created", extra={"backend": "openai/gpt-5-mini"})

    with LogContext(logger, request_id="req-123", backend="openai/gpt-4o-mini"):
        logger.warning("Retrying transient failure")
"""

import json
import logging
import os
import sys
import time
import uuid
from typing import Optional, Union

# Attributes present on every LogRecord; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "request_id", "extra"}


class RequestContextFilter(logging.Filter):
    """
    Filter that adds a request id to log records.
    """

    def __init__(self, request_id: Optional[str] = None):
        super().__init__()
        self.request_id = request_id or str(uuid.uuid4())

    def filter(self, record):
        record.request_id = getattr(record, "request_id", self.request_id)
        return True


class JsonFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    """

    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "request_id": getattr(record, "request_id", "-"),
        }

        # Fields passed with ``extra=`` land directly on the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        # Fields added by LogContext
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log_data.update(record.extra)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logger(
    name: str,
    level: Union[int, str] = None,
    log_format: str = None,
    request_id: Optional[str] = None,
) -> logging.Logger:
    """
    Configure and return a logger with the specified settings.

    Args:
        name: The name of the logger (usually __name__)
        level: The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: The format to use (json or text)
        request_id: Optional request ID for tracking related log entries

    Returns:
        A configured logger instance
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_format = log_format or os.getenv("LOG_FORMAT", "json")

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers and filters to avoid duplicates on re-setup
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for existing_filter in logger.filters[:]:
        if isinstance(existing_filter, RequestContextFilter):
            logger.removeFilter(existing_filter)

    logger.addFilter(RequestContextFilter(request_id))

    json_formatter = JsonFormatter()
    text_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - [%(request_id)s] - %(name)s - %(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    formatter = json_formatter if log_format.lower() == "json" else text_formatter

    # stderr keeps CLI stdout clean for the reply text
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


def get_logger(name: str, level: Union[int, str] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: The name of the logger (usually __name__)
        level: Override the default logging level for this logger

    Returns:
        A configured logger instance
    """
    return setup_logger(name, level=level)


class LogContext:
    """
    Context manager for temporarily adding context data to logs.

    Usage:
        with LogContext(logger, backend="openai/gpt-5-mini", attempt=2):
            logger.info("Creating prediction")  # Will include the context data
    """

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context
        self.old_factory = None

    def __enter__(self):
        self.old_factory = logging.getLogRecordFactory()

        old_factory = self.old_factory
        context = self.context

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.extra = dict(getattr(record, "extra", {}))
            record.extra.update(context)
            if "request_id" in context:
                record.request_id = context["request_id"]
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logging.setLogRecordFactory(self.old_factory)


def log_elapsed(logger: logging.Logger, message: str, started_at: float, **fields):
    """Log ``message`` at INFO with the seconds elapsed since ``started_at``."""
    elapsed = time.monotonic() - started_at
    logger.info(
        f"{message} in {elapsed:.2f}s",
        extra={"elapsed_seconds": round(elapsed, 3), **fields},
    )
    return elapsed
