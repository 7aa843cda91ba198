"""
Structured logging for pipeline runs.

Every module logs through a child of the "livetables" logger, so a single
handler configured by setup_logger() (JSON by default, text for local use)
serves the whole engine. Stage runs execute on worker threads; each JSON
line carries the thread name and, when given as extra, the stage name.
"""
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import IO

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "livetables"

JSON_FORMAT = "%(timestamp)s %(level)s %(logger)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


class StageJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for pipeline logs.

    Emits UTC ISO-8601 timestamps with milliseconds, the upper-case level,
    the logger name and the worker thread. A "stage" passed through extra
    is always placed in the payload, so runs of one stage can be filtered
    across concurrent workers.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_record["timestamp"] = created.isoformat(timespec="milliseconds")
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["thread"] = record.threadName

        stage = getattr(record, "stage", None)
        if stage is not None:
            log_record["stage"] = stage


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    format_type: str = "json",
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Configure the handler of a pipeline logger, replacing any previous one.

    Args:
        name: Logger to configure; module loggers inherit from the root one
        level: Level name; falls back to LOG_LEVEL, then INFO
        format_type: "json" or "text"
        stream: Output stream (stdout by default)

    Returns:
        The configured logger
    """
    log_level = _resolve_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    if format_type == "json":
        handler.setFormatter(StageJsonFormatter(fmt=JSON_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger instance

    Module loggers ("livetables.engine.graph") are children of the root
    pipeline logger and inherit its handler, so only the root is configured.
    """
    if name == ROOT_LOGGER_NAME or not name.startswith(f"{ROOT_LOGGER_NAME}."):
        logger = logging.getLogger(name)
        if not logger.handlers:
            return setup_logger(name)
        return logger

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger(ROOT_LOGGER_NAME)
    return logging.getLogger(name)


class log_operation:
    """
    Log the start and the outcome of an operation with its duration.

    Usage:
        with log_operation("Running stage", logger=logger, stage="quality_retail"):
            ...

    Exceptions are logged with their type and re-raised.
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **context):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.context = {"operation": operation_name, **context}
        self._started: float | None = None

    def __enter__(self):
        self._started = time.monotonic()
        self.logger.debug(f"Starting: {self.operation_name}", extra=self.context)
        return self

    @property
    def elapsed(self) -> float:
        return 0.0 if self._started is None else time.monotonic() - self._started

    def __exit__(self, exc_type, exc_val, exc_tb):
        context = {**self.context, "duration_seconds": round(self.elapsed, 3)}
        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**context, "status": "success"})
        else:
            self.logger.error(
                f"Failed: {self.operation_name}: {exc_val}",
                extra={**context, "status": "error", "error_type": exc_type.__name__},
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False
