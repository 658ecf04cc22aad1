"""
Engine logging.

Every record is written from a background QueueListener so a slow console or
log file never stalls a progression transaction. Records carry the
participant, campaign and actor of the command that produced them; commands
open a `LogContext` and every log line below them picks those fields up.

Output:
- JSON lines when `LOG_JSON` is set (default in production)
- colored text on an interactive terminal otherwise
- optional `missionflow.json.log` rotated at midnight (`LOG_TO_FILE`)
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from missionflow.core.config.config import Config

CONTEXT_FIELDS = ("participant_id", "campaign_id", "actor_id", "operation", "correlation_id")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(operation)s] %(name)s: %(message)s"
QUEUE_CAPACITY = 10_000

_command_context: ContextVar[Dict[str, Any]] = ContextVar("command_context", default={})
_listener: Optional[QueueListener] = None

# LogRecord attributes that are not user-supplied `extra=` fields
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class CommandContextFilter(logging.Filter):
    """Copy the active command's identifiers onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _command_context.get()
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, context.get(field, "-"))
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_") or value == "-":
                continue
            entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": "\033[90m",
        "INFO": "\033[36m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        levelname = record.levelname
        color = self.LEVEL_COLORS.get(levelname)
        if color:
            record.levelname = f"{color}{levelname}\033[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class DroppingQueueHandler(QueueHandler):
    """Queue handler that drops records instead of blocking when the queue is full."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            sys.stderr.write(f"missionflow: log queue full, dropped {record.getMessage()!r}\n")


def _use_json() -> bool:
    if Config.LOG_JSON is None:
        return Config.is_production()
    return bool(Config.LOG_JSON)


def _handlers(level: int) -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if _use_json():
        console.setFormatter(JSONFormatter())
    elif Config.LOG_COLORS and sys.stdout.isatty():
        console.setFormatter(ColoredFormatter(TEXT_FORMAT))
    else:
        console.setFormatter(logging.Formatter(TEXT_FORMAT))
    handlers: list[logging.Handler] = [console]

    if Config.LOG_TO_FILE:
        logs_dir = Path(Config.LOGS_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            logs_dir / "missionflow.json.log",
            when="midnight",
            backupCount=7,
            encoding="utf-8",
            utc=True,
        )
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging() -> None:
    """Install the queue handler on the root logger. Safe to call twice."""
    global _listener
    if _listener is not None:
        return

    level = logging.getLevelName(str(Config.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(QUEUE_CAPACITY)
    _listener = QueueListener(log_queue, *_handlers(level), respect_handler_level=True)
    _listener.start()

    queue_handler = DroppingQueueHandler(log_queue)
    queue_handler.addFilter(CommandContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(queue_handler)

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if Config.DATABASE_ECHO else logging.WARNING
    )


def shutdown_logging() -> None:
    """Flush queued records and detach the queue handler."""
    global _listener
    if _listener is None:
        return
    _listener.stop()
    _listener = None

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, DroppingQueueHandler):
            root.removeHandler(handler)
            handler.close()


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


def get_log_context() -> Dict[str, Any]:
    return dict(_command_context.get())


class LogContext:
    """
    Bind command identifiers to every record logged inside the block.

    Usable with `with` and `async with`; nested blocks inherit and override
    the enclosing fields.
    """

    def __init__(self, correlation_id: Optional[str] = None, **fields: Any) -> None:
        self.fields = {key: str(value) for key, value in fields.items() if value is not None}
        self.fields["correlation_id"] = correlation_id or uuid.uuid4().hex[:8]
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _command_context.set({**_command_context.get(), **self.fields})
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _command_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


setup_logging()
