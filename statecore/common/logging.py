"""
Structured JSON logging (stdlib-only).

Goals:
- One JSON object per log line (stdout)
- Consistent core fields across every host process:
  - service, env, version
  - event_type, severity
- Semantic events via `log_event(logger, "fsm.transition", ...)`

Library modules only ever call `logging.getLogger(__name__)`; installing the
handler is the host application's job (`init_structured_logging`).
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any


_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        # logging.LogRecord built-ins
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        # our injected keys
        "service",
        "env",
        "version",
        "event_type",
        "severity",
        "message",
        "timestamp",
    }
)


def _utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_text(v: Any, *, max_len: int = 2000) -> str:
    try:
        s = "" if v is None else str(v)
    except Exception:
        s = ""
    s = s.replace("\n", " ").replace("\r", " ").strip()
    if len(s) > max_len:
        s = s[: max_len - 1] + "…"
    return s


def _env_any(*names: str, default: str = "unknown", max_len: int = 256) -> str:
    for name in names:
        v = os.getenv(name)
        if v is None:
            continue
        s = str(v).strip()
        if s:
            return _clean_text(s, max_len=max_len)
    return default


def _normalize_severity(level: str | int | None) -> str:
    if isinstance(level, int):
        return _normalize_severity(str(logging.getLevelName(level)))
    s = _clean_text(level or "INFO", max_len=16).upper()
    allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if s in allowed:
        return s
    if s == "WARN":
        return "WARNING"
    if s == "FATAL":
        return "CRITICAL"
    return "INFO"


def _json_default(v: Any) -> Any:
    # Enum-valued states/actions are the common case.
    value = getattr(v, "value", None)
    if value is not None:
        return value
    if isinstance(v, datetime):
        return v.isoformat()
    return str(v)


def _field_value(v: Any) -> Any:
    # State/action identifiers are usually Enums; log them by value so the JSON
    # line and in-process handlers (caplog, observers) see the same thing.
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, (list, tuple)):
        return [_field_value(x) for x in v]
    return v


def default_service_name() -> str:
    return _env_any("STATECORE_SERVICE_NAME", "SERVICE_NAME", "SERVICE", default="statecore", max_len=128)


def default_env_name() -> str:
    return _env_any("STATECORE_ENV", "ENVIRONMENT", "ENV", default="unknown", max_len=64)


def default_version() -> str:
    return _env_any("APP_VERSION", "VERSION", default=_package_version(), max_len=128)


def _package_version() -> str:
    try:
        from statecore import __version__  # noqa: WPS433
    except ImportError:
        return "unknown"
    return str(__version__)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str | None = None, env: str | None = None, version: str | None = None) -> None:
        super().__init__()
        self._service = _clean_text(service or default_service_name(), max_len=128) or "unknown"
        self._env = _clean_text(env or default_env_name(), max_len=64) or "unknown"
        self._version = _clean_text(version or default_version(), max_len=128) or "unknown"

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (format required by logging)
        severity = _normalize_severity(getattr(record, "severity", None) or record.levelname)
        event_type = _clean_text(getattr(record, "event_type", None) or "", max_len=128) or "log"

        payload: dict[str, Any] = {
            "timestamp": _utc_ts(),
            "severity": severity,
            "service": _clean_text(getattr(record, "service", None) or self._service, max_len=128) or "unknown",
            "env": _clean_text(getattr(record, "env", None) or self._env, max_len=64) or "unknown",
            "version": _clean_text(getattr(record, "version", None) or self._version, max_len=128) or "unknown",
            "event_type": event_type,
            "message": _clean_text(record.getMessage(), max_len=4000),
            "logger": _clean_text(record.name, max_len=256),
        }

        if record.exc_info:
            try:
                payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]
            except Exception:
                payload["exception"] = "exception_format_failed"
        elif record.stack_info:
            payload["stack"] = _clean_text(record.stack_info, max_len=8000)

        # fsm.* events carry their fields under one key so transitions stay greppable.
        fields: dict[str, Any] = {}
        for k, v in record.__dict__.items():
            if k in _RESERVED_ATTRS or k.startswith("_"):
                continue
            fields[str(k)] = _field_value(v)
        if event_type.startswith("fsm.") and fields:
            payload["fsm"] = fields
        else:
            payload.update(fields)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    level: str | int | None = None,
    logger_name: str | None = None,
) -> logging.Logger:
    """
    Configure stdlib logging to emit JSON lines to stdout.

    - logger_name=None configures the root logger (host applications).
    - logger_name="statecore" scopes JSON output to this package's loggers
      and stops them propagating, leaving the host's root handlers alone.

    Safe to call multiple times (last call wins).
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    target = logging.getLogger(logger_name)
    target.setLevel(lvl)

    # Replace handlers to ensure JSON output.
    target.handlers = []
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version))
    target.addHandler(handler)

    if logger_name:
        target.propagate = False
    else:
        logging.captureWarnings(True)
    return target


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    """
    Convenience wrapper for semantic events with stable `event_type`.

    Enum-valued fields are flattened to their values. No-op when the level is
    disabled for `logger`.
    """
    lvl = getattr(logging, str(severity).upper(), logging.INFO)
    if not logger.isEnabledFor(lvl):
        return
    logger.log(
        lvl,
        message or event_type,
        extra={"event_type": _clean_text(event_type, max_len=128), **{k: _field_value(v) for k, v in fields.items()}},
    )
