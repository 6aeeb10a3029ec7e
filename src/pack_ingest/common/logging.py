"""Structured logging for the CLI, the API and ingestion jobs.

Records can carry structured fields two ways: per call with
``extra={"extra_fields": {...}}``, or for a whole block with LogContext,
which tags every record created inside it (the CLI tags each run with the
archive and category). Both end up as top-level keys in JSON output and as
a ``[key=value ...]`` suffix on the console.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .config_utils import expand_path_variables
from .logging_config import LoggingConfig


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured fields of a record: LogContext fields, then per-call extras."""
    fields: Dict[str, Any] = {}
    fields.update(getattr(record, "context_fields", {}))
    fields.update(getattr(record, "extra_fields", {}))
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        log_data.update(record_fields(record))

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line console output with structured fields appended."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-8s %(name)s | %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = record_fields(record)
        if fields:
            line += " [" + " ".join(f"{key}={value}" for key, value in fields.items()) + "]"
        return line


def setup_logging(config: LoggingConfig, level: Optional[str] = None) -> None:
    """Configure the root logger from settings.

    Console output goes to stderr so that NDJSON frames printed by the CLI
    on stdout stay machine-readable. The optional log file rotates by size
    and is always JSON.

    Args:
        config: Logging settings
        level: Level overriding ``config.level`` (from the command line)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or config.level).upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(StructuredFormatter() if config.format == "json" else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if config.file:
        log_file = Path(expand_path_variables(config.file))
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.max_file_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger with structured logging support."""
    return logging.getLogger(name)


class LogContext:
    """Tag every record created inside the block with ``fields``.

    Contexts nest; inner fields win over outer ones.
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._previous_factory = None

    def __enter__(self) -> "LogContext":
        previous = logging.getLogRecordFactory()
        self._previous_factory = previous
        fields = self.fields

        def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
            record = previous(*args, **kwargs)
            record.context_fields = {**getattr(record, "context_fields", {}), **fields}
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        logging.setLogRecordFactory(self._previous_factory)
