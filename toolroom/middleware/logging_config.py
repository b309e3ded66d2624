"""
Logging setup for the toolroom service.

Every record emitted while a request is active is stamped with the request
id and the acting org/user, so service modules only pass the diecut/SN
context they know about (``extra={"diecut_sn": sn}``).

Output:
    development / testing  → one line per record, SN and actor appended
    production             → one JSON object per record
Level comes from ``LOG_LEVEL``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request-scoped fields filled in by RequestContextFilter
CONTEXT_KEYS = ("request_id", "org_id", "user_id")

# Fields callers pass explicitly through ``extra``
DOMAIN_KEYS = ("diecut_id", "diecut_sn", "operation", "sql_no")
HTTP_KEYS = ("method", "path", "status", "duration_ms", "remote_addr")

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


class RequestContextFilter(logging.Filter):
    """Copy request id and actor from ``flask.g`` onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        actor = getattr(g, "actor", None)
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        if actor is not None:
            if getattr(record, "org_id", None) is None:
                record.org_id = actor.org_id
            if getattr(record, "user_id", None) is None:
                record.user_id = actor.user_id
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        for key in CONTEXT_KEYS + DOMAIN_KEYS + HTTP_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line formatter for a terminal; level is colored."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{stamp} {color}{record.levelname[:4]}{self.RESET} {record.name}: {record.getMessage()}"]

        sn = getattr(record, "diecut_sn", None) or getattr(record, "diecut_id", None)
        if sn:
            parts.append(f"[{sn}]")
        user = getattr(record, "user_id", None)
        if user:
            parts.append(f"by={user}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"{duration:.0f}ms")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for this app."""
    testing = app.config.get("TESTING", False)
    as_json = not testing and not app.config.get("DEBUG", False)

    default_level = "INFO" if as_json else "DEBUG"
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    # create_app runs once per test session; replace rather than stack handlers
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging ready (level=%s, json=%s)", level_name, as_json)
