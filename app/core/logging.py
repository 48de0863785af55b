"""Structured JSON logging for the rate limiter.

Every record becomes one JSON line::

    {"timestamp": "...", "level": "warn", "logger": "...", "message": "rate_limit_exceeded",
     "request_id": "...", "service": "rate_limit_middleware", "event": "rate_limit_exceeded", ...}

Fields passed with ``extra=`` land at the top level, secrets among them are
replaced by ``[REDACTED]``, and the id of the current request is attached
from a context variable set by ``request_id_middleware``.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from app.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "secret",
        "token",
        "x-internal-token",
        "internal_token",
        "internal_api_token",
        "app_internal_api_token",
        "store_url",
    }
)

# Python's level names mapped to the ones log consumers expect
_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_current_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> None:
    _current_request_id.set(request_id)


def get_request_id() -> str | None:
    return _current_request_id.get()


def clear_request_id() -> None:
    _current_request_id.set(None)


def level_name(record: logging.LogRecord) -> str:
    """Return the lowercase level name written to the ``level`` field."""

    return _LEVEL_NAMES.get(record.levelno, record.levelname.lower())


def redact(value: Any, keys: frozenset[str] = SENSITIVE_KEYS) -> Any:
    """Replace values stored under sensitive keys, descending into containers."""

    if isinstance(value, Mapping):
        return {k: REDACTED if str(k).lower() in keys else redact(v, keys) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, keys) for item in value)
    return value


def extra_fields(record: logging.LogRecord, keys: frozenset[str] = SENSITIVE_KEYS) -> dict[str, Any]:
    """Collect the ``extra=`` fields of ``record`` with secrets redacted."""

    fields = {
        name: value
        for name, value in vars(record).items()
        if name not in _RECORD_ATTRS and not name.startswith("_")
    }
    return redact(fields, keys)


class RequestIdFilter(logging.Filter):
    """Stamp records with the request id of the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive ``extra=`` fields in place, for any formatter."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS))

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in extra_fields(record, self.sensitive_keys).items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON object."""

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS))

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": level_name(record),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        payload.update(extra_fields(record, self.sensitive_keys))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler_for(cfg: LogSettings) -> logging.Handler:
    if cfg.output != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/rate-limit-api.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(path, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8")
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the single root handler described by ``log_settings``.

    Replaces any handler installed by a previous call, so building several
    apps in one process does not duplicate output.
    """

    cfg = log_settings or settings.log

    handler = _handler_for(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).propagate = False
