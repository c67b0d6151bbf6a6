"""JSON structured logging for docflow workers.

Provides structured logging with workflow/event correlation and contextual
metadata. Uses python-json-logger for JSON formatting.
"""

import logging
import sys
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from docflow.common.tracing import get_correlation_id, get_event_id, get_workflow_id


class CorrelationIdFilter(logging.Filter):
    """Logging filter that injects correlation identifiers into log records.

    The identifiers are stored in context variables bound by the stage worker
    for each event it processes.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject correlation identifiers into the log record.

        Args:
            record: The log record to modify.

        Returns:
            bool: Always True (doesn't filter out records).
        """
        record.correlation_id = get_correlation_id()
        if not hasattr(record, "workflow_id"):
            record.workflow_id = get_workflow_id()
        if not hasattr(record, "event_id"):
            record.event_id = get_event_id()
        return True


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with additional fields.

    Adds timestamp, level, logger, module and correlation fields to all log records.
    """

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the JSON log record.

        Args:
            log_record: The dictionary that will be serialized to JSON.
            record: The original logging.LogRecord.
            message_dict: Dictionary from the log message.
        """
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = record.created
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        for field in ("correlation_id", "workflow_id", "event_id"):
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value


def setup_logging(level: str = "INFO") -> None:
    """Configure JSON structured logging for a worker or CLI process.

    Sets up:
    - JSON formatter with correlation identifiers
    - Console handler writing to stdout
    - Log level from the parameter

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Example:
        >>> setup_logging("DEBUG")
        >>> logger = get_logger(__name__)
        >>> logger.info("Rendered page", extra={"page_number": 1})
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level.upper())

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(module)s %(function)s %(message)s")
    console_handler.setFormatter(json_formatter)
    console_handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module.

    Args:
        name: The logger name (typically __name__ from the calling module).

    Returns:
        logging.Logger: Logger instance.
    """
    return logging.getLogger(name)


# Export public API
__all__ = ["CorrelationIdFilter", "CustomJsonFormatter", "get_logger", "setup_logging"]
