import logging
import sys
import json
import datetime
import os
from typing import Any, Dict, Optional

class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings for structured logging.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        # Context attached through `extra={"persistence_id": ...}`
        persistence_id = getattr(record, "persistence_id", None)
        if persistence_id is not None:
            log_record["persistence_id"] = persistence_id

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_record["stack_trace"] = self.formatStack(record.stack_info)

        return json.dumps(log_record)

class ConsoleFormatter(logging.Formatter):
    """
    Human-readable formatter for development.
    """
    def format(self, record: logging.LogRecord) -> str:
        # 2023-10-27T10:00:00 [INFO] [durastore.store] message
        timestamp = datetime.datetime.fromtimestamp(record.created).strftime('%Y-%m-%dT%H:%M:%S')
        line = f"{timestamp} [{record.levelname}] [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

def setup_logging(level: int = logging.INFO, log_format: Optional[str] = None) -> None:
    """
    Configures centralized logging for durastore.
    Respects LOG_FORMAT environment variable (json/text) unless a format is passed.
    """
    log_format = (log_format or os.getenv("LOG_FORMAT", "text")).lower()

    handler = logging.StreamHandler(sys.stdout)

    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    if root_logger.handlers:
        root_logger.handlers.clear()

    root_logger.addHandler(handler)

    # boto3 is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)

def get_logger(name: str) -> logging.Logger:
    """Returns a logger instance for a given component."""
    return logging.getLogger(f"durastore.{name}")
