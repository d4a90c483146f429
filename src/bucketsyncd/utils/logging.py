"""
Logging configuration for bucketsyncd.

Console output goes through rich's RichHandler (or a JSON formatter when
structured output is requested), with an optional plain-text file handler.
Records emitted inside a pipeline task carry the workflow name.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

ROOT_LOGGER = "bucketsyncd"

# Workflow name for records emitted from inside a pipeline task
_workflow: ContextVar[str | None] = ContextVar("workflow", default=None)


def get_workflow() -> str | None:
    """Get the workflow bound to the current context, if any."""
    return _workflow.get()


@contextmanager
def workflow_context(name: str) -> Iterator[str]:
    """
    Tag every log record emitted in this context with a workflow name.

    asyncio tasks copy the context at creation time, so entering this inside a
    pipeline's top-level coroutine tags everything the pipeline logs.

    Usage:
        with workflow_context("KSK1"):
            logger.info("uploaded")  # record.workflow == "KSK1"
    """
    token = _workflow.set(name)
    try:
        yield name
    finally:
        _workflow.reset(token)


class WorkflowFilter(logging.Filter):
    """Copy the context workflow name onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "workflow"):
            record.workflow = _workflow.get()
        return True


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        workflow = getattr(record, "workflow", None)
        if workflow:
            result += f" workflow={workflow}"
        return result


class ConsoleFormatter(logging.Formatter):
    """Message-only formatter for the rich console, prefixed with the workflow."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        workflow = getattr(record, "workflow", None)
        return f"[{workflow}] {message}" if workflow else message


# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON-formatted log formatter with structured fields.

    Includes timestamp, level, logger name, message, the workflow (if set),
    exception info and any fields passed through ``extra=``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            if key == "workflow" and value is None:
                continue
            log_data[key] = value

        return json.dumps(log_data, default=str)


# Map string level names to logging constants (``warn`` is the upstream spelling)
LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_level(level: str | int) -> int:
    """
    Parse logging level from string or int.

    Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return LEVEL_MAP.get(level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    *,
    json_format: bool = False,
    log_file: str | Path | None = None,
    console: Any | None = None,
) -> logging.Logger:
    """
    Setup logging for bucketsyncd.

    Args:
        level: Logging level as string (debug, info, warn, ...) or int
        json_format: Emit one JSON object per line on stderr instead of rich text
        log_file: Optional file path to also write logs to
        console: Optional rich Console for the RichHandler

    Returns:
        The configured ``bucketsyncd`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.filters.clear()

    level_int = parse_level(level)
    logger.setLevel(level_int)

    if json_format:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(StructuredFormatter())
    else:
        from rich.logging import RichHandler

        handler = RichHandler(
            console=console,
            level=level_int,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            log_time_format="[%Y-%m-%d %X]",
        )
        handler.setFormatter(ConsoleFormatter())
    handler.setLevel(level_int)
    handler.addFilter(WorkflowFilter())
    logger.addHandler(handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        file_handler.addFilter(WorkflowFilter())
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a logger instance under the bucketsyncd namespace.

    Args:
        name: Logger name (default: "bucketsyncd")
    """
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger
