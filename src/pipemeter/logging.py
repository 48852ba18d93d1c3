"""Logging setup for the pipemeter CLI.

Console output goes to stderr so stdout stays free for piped data. An
optional log file always receives JSON lines.
"""

import logging
import logging.handlers
import json
import sys
from typing import Any, Dict, Optional, Type
from datetime import datetime, timezone
from pathlib import Path

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Loggers of the HTTP stack used by HttpSource
QUIET_LOGGERS = ("urllib3", "requests")


class StructuredFormatter(logging.Formatter):
    """JSON formatter; includes fields attached by ``LogContext``."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        log_data.update(getattr(record, "extra_fields", {}))
        return json.dumps(log_data, default=str)


class DetailedFormatter(logging.Formatter):
    """Human-readable formatter with timestamp and call site."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class SimpleFormatter(logging.Formatter):
    """Short console formatter."""

    def __init__(self) -> None:
        super().__init__(fmt="%(levelname)-8s | %(name)s | %(message)s")


FORMATTERS: Dict[str, Type[logging.Formatter]] = {
    "simple": SimpleFormatter,
    "detailed": DetailedFormatter,
    "json": StructuredFormatter,
}


def setup_logging(
    level: str = "INFO",
    format: str = "simple",
    log_file: Optional[Path] = None,
) -> None:
    """Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: Console format (simple, detailed, json); unknown names fall
            back to simple
        log_file: Optional rotating JSON log file
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(FORMATTERS.get(format, SimpleFormatter)())
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LogContext:
    """Attach fields to every record logged under ``logger`` while active.

    Records from other logger hierarchies (e.g. urllib3) are left alone.
    """

    def __init__(self, logger: logging.Logger, **fields: Any) -> None:
        self.logger = logger
        self.fields = fields
        self.old_factory: Optional[Any] = None

    def _applies_to(self, name: str) -> bool:
        prefix = self.logger.name
        return prefix == "root" or name == prefix or name.startswith(prefix + ".")

    def __enter__(self) -> "LogContext":
        old_factory = self.old_factory = logging.getLogRecordFactory()

        def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
            record = old_factory(*args, **kwargs)
            if self._applies_to(record.name):
                record.extra_fields = {**getattr(record, "extra_fields", {}), **self.fields}
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        logging.setLogRecordFactory(self.old_factory)
