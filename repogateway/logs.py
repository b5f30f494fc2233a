"""Structured JSON logging for the gateway components."""

from __future__ import annotations

import enum
import json
import logging
import sys
from datetime import datetime
from typing import IO, Any

_LOGGER_NAME = "repogateway"
_logger = logging.getLogger(_LOGGER_NAME)

_DISABLED = logging.CRITICAL + 10

_LEVEL_NAMES = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "disabled": _DISABLED,
}

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class LogLevel(enum.IntEnum):
    """Log levels used by the gateway."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR


def _level_label(levelno: int) -> str:
    if levelno >= logging.CRITICAL:
        return "fatal"
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


class _JsonFormatter(logging.Formatter):
    def __init__(self, timestamps: bool = False) -> None:
        super().__init__()
        self.timestamps = timestamps

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {"level": _level_label(record.levelno)}
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _RESERVED
        )
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        if self.timestamps:
            entry["time"] = (
                datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
            )
        entry["message"] = record.getMessage()
        return json.dumps(entry, default=str)


class _ComponentLogger(logging.LoggerAdapter):
    """Tags every record with a component name and, optionally, request data."""

    def __init__(self, logger: logging.Logger, component: str, context: Any) -> None:
        super().__init__(logger, {"component": component})
        self.context = context

    def process(self, msg, kwargs):
        fields: dict[str, Any] = {"component": self.extra["component"]}
        if self.context is not None:
            fields["req_id"] = str(self.context.request_id)
            fields["req_dt"] = self.context.elapsed() * 1000.0
        fields.update(kwargs.get("extra") or {})
        kwargs["extra"] = fields
        return msg, kwargs


def init_logging(sink: IO[str] | None = None) -> None:
    """Send JSON log lines to ``sink`` (standard error by default) at level info."""
    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
    handler = logging.StreamHandler(sink if sink is not None else sys.stderr)
    handler.setFormatter(_JsonFormatter())
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)
    _logger.propagate = False


def configure_logging(config: Any) -> None:
    """Apply the log level and timestamp settings of a configuration.

    An unknown level name falls back to info.
    """
    if config.log_timestamps:
        for handler in _logger.handlers:
            if isinstance(handler.formatter, _JsonFormatter):
                handler.formatter.timestamps = True
    _logger.setLevel(_LEVEL_NAMES.get(config.log_level, logging.INFO))


def get_logger(component: str, context: Any = None) -> logging.LoggerAdapter:
    """Return a logger tagged with ``component`` and, if given, the request context."""
    return _ComponentLogger(_logger, component, context)