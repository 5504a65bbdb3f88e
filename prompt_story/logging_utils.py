"""
Logging utilities for prompt-story.

Human-readable output is the default for interactive use. CI runners and
hook wrappers can switch to single-line JSON records, which keep the
``extra`` context (commit, session, tool) as separate fields.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}

DEFAULT_FORMAT = "%(levelname)s  %(message)s"


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for machine-readable logs.

    Outputs logs as single-line JSON objects with consistent fields:
    - timestamp: ISO 8601 format in UTC
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - Additional context fields from extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_obj[key] = value
                except (TypeError, ValueError):
                    log_obj[key] = str(value)

        return json.dumps(log_obj, default=str)


def configure_logging(
    level: int = logging.WARNING,
    json_output: bool = False,
    logger_name: str = "prompt_story",
) -> logging.Logger:
    """
    Configure logging for the prompt_story package.

    Args:
        level: Logging level (default: WARNING)
        json_output: Emit single-line JSON records instead of plain text
        logger_name: Logger to configure (default: the package logger)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a prompt-story component with consistent naming.

    Args:
        name: Component name (e.g., 'store.git', 'lifecycle')

    Returns:
        Logger instance with name 'prompt_story.{name}'
    """
    return logging.getLogger(f"prompt_story.{name}")


class CommitLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds commit context to all log messages.

    The short commit id is prefixed to the message and the full id is
    attached as an ``extra`` field for the JSON formatter.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Add commit context to log record."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        commit = self.extra.get("commit")
        if commit:
            msg = f"{commit[:7]}: {msg}"
        return msg, kwargs
