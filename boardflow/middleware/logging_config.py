"""
Structured logging configuration.

Two output formats, picked by ``LOG_FORMAT`` (``json`` | ``readable``).
When unset, production logs JSON and development/testing log readable lines.
``LOG_LEVEL`` sets the root level.

Every record gets the current request id (from the timing middleware) and
the domain context the services pass through ``extra=``: item, board,
approval, automation, event type and scheduler job.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms")
DOMAIN_FIELDS = ("item_id", "board_id", "approval_id", "automation_id", "event_type", "job_name")

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestIdFilter(logging.Filter):
    """Attach ``g.request_id`` to records emitted while serving a request."""

    def filter(self, record):
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


def _context(record) -> dict:
    ctx = {}
    for key in REQUEST_FIELDS + DOMAIN_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            ctx[key] = val
    return ctx


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = _context(record)
        ctx.pop("duration_ms", None)
        tail = " ".join(f"{k}={v}" for k, v in ctx.items() if k in DOMAIN_FIELDS or k == "request_id")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if tail:
            line += f"  ({tail})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    fmt = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestIdFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session and per worker; avoid stacking handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
