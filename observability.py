"""
Structured logging and correlation IDs.

- structlog configuration with JSON/console rendering
- request_id binding via contextvars
- sensitive data redaction
- in-memory buffer of recent error events
"""
from __future__ import annotations

import logging
import os
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict

import structlog

SCHEMA_VERSION = "1.0"

# Custom log level for anomalies
ANOMALY_LEVEL_NUM = 35  # between WARNING(30) and ERROR(40)
if not hasattr(logging, "ANOMALY"):
    logging.addLevelName(ANOMALY_LEVEL_NUM, "ANOMALY")

_RECENT_ERRORS: deque = deque(maxlen=200)
_SETUP_LOCK = threading.Lock()

_SENSITIVE_KEYS = {"token", "password", "secret", "authorization", "cookie", "set-cookie"}


def _redact_sensitive(logger, method, event_dict: Dict[str, Any]):
    try:
        for key in list(event_dict.keys()):
            try:
                if any(s in key.lower() for s in _SENSITIVE_KEYS):
                    event_dict[key] = "[REDACTED]"
            except Exception:
                continue
    except Exception:
        return event_dict
    return event_dict


def _add_schema_version(logger, method, event_dict: Dict[str, Any]):
    event_dict.setdefault("schema_version", SCHEMA_VERSION)
    return event_dict


def _choose_renderer(log_format: str | None = None):
    debug = str(os.getenv("DEBUG", "")).lower() in {"1", "true", "yes"}
    fmt = (log_format or os.getenv("LOG_FORMAT") or "").lower().strip()
    if debug or fmt == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_structlog_logging(min_level: str | int = "INFO", log_format: str | None = None) -> None:
    level = logging.getLevelName(min_level) if isinstance(min_level, str) else int(min_level)
    if not isinstance(level, int):
        level = logging.INFO

    with _SETUP_LOCK:
        if not logging.getLogger().handlers:
            logging.basicConfig(level=level, handlers=[logging.StreamHandler()])
        else:
            logging.getLogger().setLevel(level)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                _redact_sensitive,
                _add_schema_version,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                _choose_renderer(log_format),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=False,
        )


def generate_request_id() -> str:
    return str(uuid.uuid4())[:8]


def bind_request_id(request_id: str) -> None:
    try:
        structlog.contextvars.bind_contextvars(request_id=request_id)
    except Exception:
        pass


def clear_request_context() -> None:
    try:
        structlog.contextvars.clear_contextvars()
    except Exception:
        pass


def get_request_id(default: str = "") -> str:
    try:
        ctx = structlog.contextvars.get_contextvars()
    except Exception:
        return default
    rid = ctx.get("request_id") if isinstance(ctx, dict) else None
    return str(rid or default)


def emit_event(event: str, severity: str = "info", **fields: Any) -> None:
    logger = structlog.get_logger()
    fields.setdefault("event", event)

    if severity in {"error", "critical"}:
        request_id = str(fields.get("request_id") or get_request_id()).strip()
        if request_id:
            fields.setdefault("request_id", request_id)
        # Keep a lightweight in-memory buffer of recent errors
        try:
            _RECENT_ERRORS.append({
                "ts": datetime.now(timezone.utc).isoformat(),
                "event": str(event),
                "error": str(fields.get("error") or fields.get("message") or ""),
                "operation": str(fields.get("operation") or ""),
            })
        except Exception:
            pass
        logger.error(**fields)
    elif severity in {"warn", "warning"}:
        logger.warning(**fields)
    elif severity == "anomaly":
        # Structlog does not expose custom levels directly; enrich and log as warning with level hint
        fields["level"] = "ANOMALY"
        logger.warning(**fields)
    elif severity == "debug":
        logger.debug(**fields)
    else:
        logger.info(**fields)


def get_recent_errors(limit: int = 10) -> list[Dict[str, Any]]:
    """Return the most recent error events recorded via emit_event."""
    if limit <= 0:
        return []
    return list(_RECENT_ERRORS)[-limit:]
