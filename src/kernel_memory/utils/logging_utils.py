"""Logging for Kernel Memory.

Records go through the standard ``logging`` module and are rendered by
structlog. The console shows one line per record with the time, level,
subsystem, asyncio task and the document being processed; log files and
``--json`` output are JSON lines with the same fields.

Components log through :func:`log_message`, naming their subsystem
("Orchestrator", "Queue", "Step:partition", ...) and, where they have one,
the pipeline the record is about.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, MutableMapping
from typing import Any

import structlog
from structlog.dev import Column, KeyValueColumnFormatter
from structlog.processors import CallsiteParameter, CallsiteParameterAdder

logging.getLogger().addHandler(logging.NullHandler())

DEFAULT_SUBSYSTEM = "KM"

# Record fields that identify the pipeline a record belongs to
CONTEXT_FIELDS = ("index", "document_id", "step")

# Minimum levels of chatty dependencies
NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "openai": logging.WARNING,
    "pdfminer": logging.ERROR,
    "sqlalchemy.engine": logging.WARNING,
    "urllib3": logging.WARNING,
}

_RESET = "\033[0m"
LEVEL_COLORS: dict[str, str] = {
    "DEBUG": "\033[32m",
    "INFO": "\033[36m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}


class KMLogger(logging.LoggerAdapter):
    """Adapter adding ``subsystem`` and pipeline context to every record.

    ``logger.info("Started", subsystem="Orchestrator", document_id="doc1")``
    stores both keywords on the record, where the structlog formatter picks
    them up.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.pop("extra", None) or {})
        extra["subsystem"] = kwargs.pop("subsystem", None) or extra.get("subsystem") or DEFAULT_SUBSYSTEM
        for field in CONTEXT_FIELDS:
            value = kwargs.pop(field, None)
            if value is not None:
                extra[field] = value
        kwargs["extra"] = extra
        return msg, kwargs


logger = KMLogger(logging.getLogger("kernel_memory"), {})


def get_logger() -> KMLogger:
    """The shared Kernel Memory logger."""
    return logger


def log_message(
    level: str,
    message: str,
    subsystem: str = DEFAULT_SUBSYSTEM,
    callback: Callable[[str, str, str], None] | None = None,
    **context: str,
) -> None:
    """Log *message* and mirror it to *callback*.

    Args:
        level: Level name such as ``"INFO"``
        message: Message text
        subsystem: Component emitting the record
        callback: Optional ``(level, message, subsystem)`` listener
        **context: ``index``, ``document_id`` and ``step`` of the pipeline
            the record is about
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logger.log(numeric_level, message, subsystem=subsystem, stacklevel=2, **context)

    if callback is not None:
        try:
            callback(level, message, subsystem)
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning(f"Log callback failed: {exc}", subsystem="Logging")


# structlog processors


def uppercase_level(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if "level" in event_dict:
        event_dict["level"] = str(event_dict["level"]).upper()
    return event_dict


def add_task_name(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Name of the asyncio task emitting the record, e.g. ``km-worker-1``."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return event_dict
    if task is not None:
        event_dict["task"] = task.get_name()
    return event_dict


def add_pipeline(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Collapse the pipeline context into one ``pipeline`` field.

    ``index=docs, document_id=doc1, step=partition`` becomes
    ``docs/doc1:partition``.
    """
    index = event_dict.pop("index", None)
    document_id = event_dict.pop("document_id", None)
    step = event_dict.pop("step", None)
    if document_id:
        pipeline = f"{index}/{document_id}" if index else str(document_id)
        event_dict["pipeline"] = f"{pipeline}:{step}" if step else pipeline
    return event_dict


def add_subsystem(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Use the subsystem as the record's source, or the logger name for third-party records."""
    logger_name = event_dict.pop("logger", None)
    event_dict["subsystem"] = event_dict.get("subsystem") or logger_name or DEFAULT_SUBSYSTEM
    return event_dict


def add_location(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    filename = event_dict.pop("filename", None)
    lineno = event_dict.pop("lineno", None)
    if filename and lineno:
        event_dict["location"] = f"{filename}:{lineno}"
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.stdlib.add_log_level,
        uppercase_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(allow=["subsystem", *CONTEXT_FIELDS]),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_task_name,
        CallsiteParameterAdder(
            [CallsiteParameter.FILENAME, CallsiteParameter.LINENO],
            additional_ignores=["kernel_memory.utils.logging_utils"],
        ),
        add_subsystem,
        add_pipeline,
        add_location,
    ]


# Console columns


def _colored(color: str) -> Callable[[str, Any], str]:
    def render(_key: str, value: Any) -> str:
        return f"{color}{value}{_RESET}" if value else ""

    return render


def _level(_key: str, value: Any) -> str:
    color = LEVEL_COLORS.get(str(value), "")
    return f"{color}{str(value):<8}{_RESET if color else ''}"


def _message(_key: str, value: Any) -> str:
    return "" if value is None else str(value)


def console_renderer(colors: bool = True) -> structlog.dev.ConsoleRenderer:
    """Columns: time, level, subsystem, task, pipeline, message, location."""
    dim = _colored("\033[90m") if colors else _message
    columns = [
        Column("timestamp", dim),
        Column("level", _level if colors else _message),
        Column("subsystem", _colored("\033[94m") if colors else _message),
        Column("task", dim),
        Column("pipeline", _colored("\033[35m") if colors else _message),
        Column("event", _message),
        Column("location", dim),
        Column("", KeyValueColumnFormatter(key_style="", value_style="", reset_style="", value_repr=str)),
    ]
    return structlog.dev.ConsoleRenderer(colors=colors, sort_keys=False, columns=columns)


def _handler(handler: logging.Handler, renderer: Any) -> logging.Handler:
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_pre_chain()))
    return handler


def setup_logging(
    log_file: str | None = None,
    log_level: int = logging.INFO,
    json_logs: bool = False,
) -> None:
    """Route every record to stderr, and to *log_file* as JSON lines.

    Args:
        log_file: Optional path of a JSON lines log file
        log_level: Minimum level of Kernel Memory records
        json_logs: Write JSON lines to stderr as well
    """
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers = []
    root.setLevel(log_level)

    for name, minimum in NOISY_LOGGERS.items():
        noisy = logging.getLogger(name)
        noisy.handlers = []
        noisy.propagate = True
        noisy.setLevel(max(minimum, log_level))

    root.addHandler(
        _handler(
            logging.StreamHandler(),
            structlog.processors.JSONRenderer() if json_logs else console_renderer(),
        )
    )
    if log_file:
        root.addHandler(_handler(logging.FileHandler(log_file), structlog.processors.JSONRenderer()))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_pre_chain(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
