"""Process-wide logging setup for idxalerts.

``configure_logging()`` is called once by the CLI and by ``create_app`` when
the HTTP surface is served.  Modules only ever do::

    logger = logging.getLogger(__name__)

and attach batch-level context through ``extra={"event": ...}``.  The batch
id is never passed explicitly: :data:`RUN_ID_CTX` carries it across every
per-search task and :class:`RunContextFilter` stamps it on each record.

Environment fallbacks (read at call time):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR | CRITICAL   (default: INFO)
    LOG_FORMAT  text | json                                 (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = ["configure_logging", "JsonFormatter", "RUN_ID_CTX", "RunContextFilter"]

#: Identifier of the batch currently executing, or ``"-"`` outside one.
RUN_ID_CTX: ContextVar[str] = ContextVar("run_id", default="-")

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_FORMATS = ("text", "json")

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(run_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are only interesting when debugging.
_QUIET_UNLESS_DEBUG = ("httpx", "httpcore", "asyncio", "aiosqlite", "uvicorn.access")

# Attributes every LogRecord has; anything else arrived through ``extra``.
_BUILTIN_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "run_id"}


class RunContextFilter(logging.Filter):
    """Copy :data:`RUN_ID_CTX` onto ``record.run_id``."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.run_id = RUN_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, shaped for log aggregation.

    Example::

        {"ts": "2026-03-04T08:00:01.204Z", "level": "INFO",
         "logger": "idxalerts.orchestrator.run_loop", "run_id": "a3f2b1c0",
         "event": "BATCH_COMPLETE",
         "message": "Batch summary: due=3 executed=3 matches=7 errors=0",
         "extra": {}}

    ``event`` is ``null`` for records logged without one.  Exceptions are
    rendered into ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extra = {k: v for k, v in record.__dict__.items() if k not in _BUILTIN_ATTRS}
        payload: dict[str, Any] = {
            "ts": _utc_stamp(record),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", RUN_ID_CTX.get()),
            "event": extra.pop("event", None),
            "message": record.getMessage(),
            "extra": extra,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)


def _utc_stamp(record: logging.LogRecord) -> str:
    created = datetime.fromtimestamp(record.created, tz=UTC)
    return f"{created:%Y-%m-%dT%H:%M:%S}.{int(record.msecs):03d}Z"


def _resolve(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    resolved = value or os.environ.get(env_var) or default
    resolved = resolved.lower() if default.islower() else resolved.upper()
    if resolved not in allowed:
        raise ValueError(f"Unknown {env_var} {resolved!r}; expected one of {', '.join(allowed)}")
    return resolved


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install a single stderr handler on the root logger.

    *level* and *fmt* fall back to ``$LOG_LEVEL`` / ``$LOG_FORMAT``.  When the
    root logger already has handlers only the level is adjusted, unless
    *force* is set.

    Raises:
        ValueError: For an unknown level or format.
    """
    resolved_level = _resolve(level, "LOG_LEVEL", "INFO", _LEVELS)
    resolved_fmt = _resolve(fmt, "LOG_FORMAT", "text", _FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, _DATE_FORMAT))
    root.handlers[:] = [handler]

    quiet_level = logging.DEBUG if resolved_level == "DEBUG" else logging.WARNING
    for name in _QUIET_UNLESS_DEBUG:
        logging.getLogger(name).setLevel(quiet_level)
