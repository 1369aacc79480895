"""
Structured logging for the update installer.

Features:
- JSON-formatted log output for machine-readable logs
- Plain text output for interactive use of the CLI
- Attempt context: while an update or rollback runs, every record carries
  the managed root, the package version and the state machine state, so
  interleaved output from several roots can be told apart.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from update_installer.config import LoggingConfig

ROOT_LOGGER_NAME = "update_installer"

# Plain format used when JSON output is disabled
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attempt context keys, in the order they are rendered
ATTEMPT_FIELDS = ("root", "version", "state")

_current_attempt: ContextVar[dict[str, str] | None] = ContextVar(
    "update_installer_attempt", default=None
)

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "asctime",
        "attempt",
    }
)


# =============================================================================
# Attempt Context
# =============================================================================


def _clean(fields: dict[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(ATTEMPT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown attempt fields: {', '.join(sorted(unknown))}")
    return {key: str(value) for key, value in fields.items() if value is not None}


@contextmanager
def attempt_context(**fields: Any) -> Iterator[None]:
    """
    Attach attempt fields to every record logged inside the block.

    Nested blocks extend the outer context; leaving a block restores it.

    Example:
        >>> with attempt_context(root="/var/lib/app"):
        ...     bind_attempt(version="1.2.0", state="validating")
        ...     logger.info("Validated package")
    """
    token = _current_attempt.set({**(_current_attempt.get() or {}), **_clean(fields)})
    try:
        yield
    finally:
        _current_attempt.reset(token)


def bind_attempt(**fields: Any) -> None:
    """Update fields of the running attempt; a no-op outside attempt_context."""
    current = _current_attempt.get()
    if current is None:
        return
    _current_attempt.set({**current, **_clean(fields)})


def current_attempt() -> dict[str, str]:
    """Copy of the fields of the running attempt (empty outside one)."""
    return dict(_current_attempt.get() or {})


class AttemptContextFilter(logging.Filter):
    """Stamps the running attempt's fields onto each record as ``attempt``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "attempt"):
            record.attempt = current_attempt()
        return True


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each log record is formatted as a JSON object with consistent fields:
    - timestamp: ISO 8601 formatted timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - attempt: root/version/state of the running attempt, when there is one
    - Additional fields from the record's extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        attempt = getattr(record, "attempt", None)
        if attempt:
            log_entry["attempt"] = {
                key: attempt[key] for key in ATTEMPT_FIELDS if key in attempt
            }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class PlainFormatter(logging.Formatter):
    """
    Text formatter that appends the attempt context to the message.

    Example output:
        2026-01-01 10:00:00,000 - update_installer.updates.operations - INFO -
        Deployed package files [root=/var/lib/app version=1.2.0 state=deploying]
    """

    def formatMessage(self, record: logging.LogRecord) -> str:
        message = super().formatMessage(record)
        attempt = getattr(record, "attempt", None) or {}
        context = " ".join(
            f"{key}={attempt[key]}" for key in ATTEMPT_FIELDS if key in attempt
        )
        return f"{message} [{context}]" if context else message


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_to_stdout: bool = True,
) -> logging.Logger:
    """
    Configure the logging system for the installer.

    Args:
        config: Optional LoggingConfig object with logging settings.
            If provided, overrides the keyword parameters.
        level: Default log level if no config is provided.
        json_format: Whether to use JSON formatting.
        log_to_stdout: Whether to log to stdout.

    Returns:
        The root logger configured for the update_installer package.

    Example:
        >>> from update_installer.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Installer started", extra={"root": "/var/lib/app"})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if log_to_stdout:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level, logging.INFO))
        handler.addFilter(AttemptContextFilter())

        if json_format:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(PlainFormatter(DEFAULT_LOG_FORMAT))

        logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "update_installer." prefix is added automatically if not present.

    Returns:
        A logger that is a child of the update_installer logger.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
