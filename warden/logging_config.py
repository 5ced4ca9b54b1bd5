"""
Structured logging configuration for warden.

Provides JSON-formatted logs with trace_id support so every line emitted
while handling one update can be correlated.

Environment Variables:
    WARDEN_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR) - default: INFO
    WARDEN_LOG_FORMAT: Log format (json, text) - default: json
    WARDEN_LOG_OUTPUT: console, file or both - default: console
    WARDEN_LOG_FILE: Log file for file/both output - default: ./log/warden.log
    WARDEN_LOG_MAX_SIZE_MB: Rotate the log file at this size - default: 100
    WARDEN_LOG_MAX_FILES: Files kept, the active one included - default: 7

Usage:
    from warden.logging_config import setup_logging, get_logger

    setup_logging("INFO", "json")
    logger = get_logger(__name__, trace_id="agent@2.3", update_id=7)
    logger.info("Applying update")
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, List, Optional

from pythonjsonlogger.json import JsonFormatter

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

FORMATS = ("json", "text")

# console is stderr: stdout carries command output
OUTPUTS = ("console", "file", "both")

DEFAULT_LOG_FILE = "./log/warden.log"


def _formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s",
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level",
            },
        )
    return logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s [trace_id=%(trace_id)s]",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _file_handler(log_file: str, max_size_mb: float, max_files: int) -> RotatingFileHandler:
    directory = os.path.dirname(os.path.abspath(log_file))
    os.makedirs(directory, exist_ok=True)
    return RotatingFileHandler(
        log_file,
        maxBytes=int(max_size_mb * 1024 * 1024),
        backupCount=max(max_files - 1, 0),
        encoding="utf-8",
    )


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    stream=None,
    log_output: str = "console",
    log_file: Optional[str] = None,
    max_size_mb: float = 100,
    max_files: int = 7,
) -> None:
    """
    Configure root logger with structured logging.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR, CRITICAL (unknown -> INFO)
        log_format: json or text
        stream: Console stream (default: stderr, keeping stdout for command output)
        log_output: console, file or both
        log_file: Path for file/both output (default: ./log/warden.log)
        max_size_mb: Size at which the log file is rotated
        max_files: Number of files kept, including the active one
    """
    level = LEVELS.get(log_level.upper(), logging.INFO)
    output = log_output.lower()
    if output not in OUTPUTS:
        raise ValueError(f"invalid log_output: {log_output}")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = []
    if output in ("console", "both"):
        handlers.append(logging.StreamHandler(stream or sys.stderr))
    if output in ("file", "both"):
        handlers.append(_file_handler(log_file or DEFAULT_LOG_FILE, max_size_mb, max_files))

    formatter = _formatter(log_format)
    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(TraceIDFilter())
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # SQL echo is far too chatty at INFO
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def get_logger(name: str, trace_id: Optional[str] = None, **fields: Any) -> logging.LoggerAdapter:
    """
    Get a logger with optional trace_id for correlation.

    Args:
        name: Logger name (typically __name__)
        trace_id: Trace ID for correlating logs (typically the update identity)
        fields: Extra fields added to every line (update_id, event_id, ...).
            Per-call extra= is replaced by these on LoggerAdapter, so bind
            structured fields here.

    Example:
        logger = get_logger(__name__, trace_id="agent@2.3")
        logger.info("Applied")
        # {"timestamp": "...", "level": "INFO", "message": "Applied", "trace_id": "agent@2.3"}
    """
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, dict(fields, trace_id=trace_id or "N/A"))


class TraceIDFilter(logging.Filter):
    """
    Logging filter that adds trace_id to all log records.

    Ensures all logs have a trace_id field, even if not set via LoggerAdapter.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trace_id"):
            record.trace_id = "N/A"  # type: ignore
        return True
