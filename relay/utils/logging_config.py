"""
Structured Logging Configuration

Configures JSON-formatted logging with correlation IDs for request tracing
and redaction of email addresses.
"""

import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

# Context variable for correlation ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
REDACTED = "[redacted-email]"
ISO_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Attributes every LogRecord has; anything else came in through ``extra``
_STANDARD_RECORD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation_id"}


def redact_emails(value: str) -> str:
    """Replace anything shaped like an email address"""
    return EMAIL_PATTERN.sub(REDACTED, value)


def redact_value(value: Any) -> Any:
    """Redact strings nested anywhere inside dicts, lists and tuples"""
    if isinstance(value, str):
        return redact_emails(value)
    if isinstance(value, dict):
        return {key: redact_value(val) for key, val in value.items()}
    if isinstance(value, list):
        return [redact_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_value(item) for item in value)
    return value


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = correlation_id_var.get()
        record.correlation_id = correlation_id or "N/A"
        return True


class EmailRedactionFilter(logging.Filter):
    """
    Scrub email addresses from the message, its args and extras,
    including strings nested in dict and list extras.
    Raw customer email must never reach log output.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_emails(str(record.msg))
        if record.args:
            record.args = redact_value(record.args)
        for key, val in list(record.__dict__.items()):
            if key not in _STANDARD_RECORD_ATTRS:
                setattr(record, key, redact_value(val))
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter for structured logging.
    Includes correlation ID, timestamp, and other metadata.
    """

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        """UTC timestamp; datetime.strftime supports %f where time.strftime does not"""
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return created.strftime(datefmt or ISO_TIMESTAMP_FORMAT)

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record"""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        if hasattr(record, "correlation_id"):
            log_record["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_record["exception"] = redact_emails(
                self.formatException(record.exc_info)
            )


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Configure application logging with JSON formatting.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("relay")
    logger.setLevel(log_level)
    logger.propagate = False

    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt=ISO_TIMESTAMP_FORMAT,
    )
    console_handler.setFormatter(formatter)

    console_handler.addFilter(CorrelationIdFilter())
    console_handler.addFilter(EmailRedactionFilter())

    logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically module name)

    Returns:
        Logger instance
    """
    if name == "relay" or name.startswith("relay."):
        return logging.getLogger(name)
    return logging.getLogger(f"relay.{name}")


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set correlation ID for the current context.
    Generates a new UUID if not provided.

    Args:
        correlation_id: Optional correlation ID

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID"""
    return correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current context"""
    correlation_id_var.set(None)
