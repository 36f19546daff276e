"""Structured logging for Vigil services.

Log records are written as one JSON object per line. Job handlers attach a
``LogContext`` so every line they emit carries the job id, topic and attempt.

Usage:
    from vigil_core.observability.logging import LogContext, get_logger

    logger = get_logger(__name__)
    logger.warning("Classifier slow", LogContext(job_id=12, topic="moderation"), elapsed=3.2)
"""

import json
import logging
import sys
import traceback
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from functools import partialmethod
from typing import Any, Optional

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "vigil"

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3")

# Attributes every LogRecord has; anything else was passed via ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_loggers: dict[str, "StructuredLogger"] = {}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON.

    Warnings and above also carry their source location. Fields passed via
    ``extra`` are copied to the top level; values that cannot be encoded are
    stringified.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = _jsonable(value)

        return json.dumps(entry)


@dataclass
class LogContext:
    """Job fields attached to every line logged while handling a job."""

    job_id: Optional[int] = None
    topic: Optional[str] = None
    attempt: Optional[int] = None
    user_id: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, with ``extra`` merged in."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


class StructuredLogger:
    """Wraps a stdlib logger; keyword arguments become structured fields."""

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def log(
        self,
        level: int,
        msg: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **values: Any,
    ) -> None:
        if context is not None:
            values = {**context.to_dict(), **values}
        self._logger.log(level, msg, exc_info=exc_info, extra=values)

    debug = partialmethod(log, logging.DEBUG)
    info = partialmethod(log, logging.INFO)
    warning = partialmethod(log, logging.WARNING)
    error = partialmethod(log, logging.ERROR)
    critical = partialmethod(log, logging.CRITICAL)


def get_logger(name: str) -> StructuredLogger:
    """Get the cached structured logger for ``name``."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Root log level name.
        json_format: JSON lines when true, plain text otherwise.
        service_name: Value of the ``service`` field in JSON lines.
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
