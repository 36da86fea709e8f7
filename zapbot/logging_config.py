"""JSON logging configuration for the zapbot API.

Every record is one JSON object on stdout. Structured fields are passed as
``extra={"context": {...}}``; records emitted from an asyncio task carry the
task name so interleaved conversations can be told apart.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def _current_task_name() -> Optional[str]:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task else None


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        task_name = _current_task_name()
        if task_name:
            log_data["task"] = task_name

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # UUIDs and datetimes in context are rendered with str()
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Install the JSON handler on the root logger, replacing existing handlers."""
    root_logger = logging.getLogger()
    resolved = logging.getLevelName(level.upper())
    root_logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"zapbot.{name}")
