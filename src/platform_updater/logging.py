"""
Structured logging for the platform updater.

Features:
- JSON-formatted log output for machine-readable logs
- Consistent field structure across all log entries
- Optional per-day update log file next to stdout output
- Run timing helpers that mark the start and end of an update run
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from platform_updater.config import LoggingConfig

# Default log format for plain-text output
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Root logger name for the package
ROOT_LOGGER_NAME = "platform_updater"

_RESERVED_RECORD_KEYS = {
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
}


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each log record is formatted as a JSON object with consistent fields:
    - timestamp: ISO 8601 formatted timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
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

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Fields passed via the `extra` parameter
        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def update_log_path(log_dir: Path | str, now: datetime | None = None) -> Path:
    """
    Return the path of the update log file for a given day.

    One file is written per day, named ``<YYYY-mm-dd>-updatelog.log``.

    Args:
        log_dir: Directory holding update logs.
        now: Reference time (defaults to the current local time).

    Returns:
        Path to the day's update log.
    """
    now = now or datetime.now()
    return Path(log_dir) / f"{now:%Y-%m-%d}-updatelog.log"


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
    log_dir: Path | str | None = None,
) -> logging.Logger:
    """
    Configure the logging system for the updater.

    Args:
        config: Optional LoggingConfig object with logging settings.
            If provided, overrides other parameters.
        level: Default log level if no config is provided.
        json_format: Whether to use JSON formatting (default: True).
        log_to_stdout: Whether to log to stdout (default: True).
        log_dir: Optional directory for the per-day update log file.

    Returns:
        The root logger configured for the platform_updater package.

    Example:
        >>> from platform_updater.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Run started", extra={"run_id": "abc"})
    """
    if config is not None:
        log_level = config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
        log_dir = config.log_dir
    else:
        log_level = level.upper()

    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    if log_to_stdout:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(numeric_level)
        stream_handler.setFormatter(_build_formatter(json_format))
        logger.addHandler(stream_handler)

    if log_dir:
        log_file = update_log_path(log_dir)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(_build_formatter(json_format))
        logger.addHandler(file_handler)

    # Prevent propagation to root logger to avoid duplicate logs
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "platform_updater." prefix is added automatically if not present.

    Returns:
        A configured logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)


class RunTimer:
    """
    Marks the start and end of an update run in the log.

    The end record carries the total execution time so a day's update log
    shows how long each run took.

    Example:
        >>> timer = RunTimer(get_logger(__name__), run_id="abc")
        >>> timer.start()
        >>> elapsed = timer.end(status="success")
    """

    def __init__(self, logger: logging.Logger, run_id: str) -> None:
        self._logger = logger
        self._run_id = run_id
        self._started: float | None = None

    def start(self) -> None:
        self._started = time.monotonic()
        self._logger.info("Update run started", extra={"run_id": self._run_id})

    def end(self, **fields: Any) -> float:
        elapsed = 0.0
        if self._started is not None:
            elapsed = time.monotonic() - self._started
        self._logger.info(
            "Update run finished",
            extra={
                "run_id": self._run_id,
                "execution_time_seconds": round(elapsed, 3),
                **fields,
            },
        )
        return elapsed
