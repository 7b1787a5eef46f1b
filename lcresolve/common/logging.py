"""Bracketed line logging with structured trailing fields."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lcresolve.common.constants import LOG_EVENT_FIELDS
from lcresolve.common.fs import ensure_dir
from lcresolve.common.time_utils import utc_timestamp_iso


class BracketLineFormatter(logging.Formatter):
    """Formats records as ``[timestamp] [LEVEL] message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line = f"[{utc_timestamp_iso(created)}] [{record.levelname}] {record.getMessage()}"
        fields = []
        for field in LOG_EVENT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                fields.append(f"{field}={value}")
        if fields:
            line = f"{line} {' '.join(fields)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def build_logger(run_id: str, log_file: Path, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(f"lcresolve.{run_id}")
    logger.setLevel(_level_name(level))
    logger.handlers.clear()
    logger.propagate = False

    stream = logging.StreamHandler()
    stream.setFormatter(BracketLineFormatter())
    logger.addHandler(stream)

    ensure_dir(log_file.parent)
    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(BracketLineFormatter())
    logger.addHandler(file_handler)

    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def log_event(logger: logging.Logger, message: str, *, level: str = "INFO", **event_fields: Any) -> None:
    logger.log(_level_name(level), message, extra=event_fields)


def _level_name(level: str) -> int:
    name = level.upper()
    if name == "WARN":
        name = "WARNING"
    return logging.getLevelName(name)
