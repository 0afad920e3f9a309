"""
Logging setup for Compliance Desk.

Every record emitted while a request is being served carries the request id
and the calling employee (``X-Employee-Id``), so a task transition can be
traced from the access log to the audit entry. Scheduled jobs tag their
records with ``job_name``; workflow and escalation code tag ``task_id``.

- DEBUG apps and tests: one readable line per record
- Everything else: one JSON object per line
- LOG_LEVEL overrides the level
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Context attributes copied into the JSON body when present on a record
CONTEXT_FIELDS = (
    "request_id",
    "actor_id",
    "task_id",
    "job_name",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter")


class RequestContextFilter(logging.Filter):
    """Stamp ``request_id`` and ``actor_id`` from ``g`` onto each record.

    Values passed explicitly through ``extra=`` win. Outside a request
    (CLI jobs, the scheduler) the record is left untouched.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor_id", None) is None:
                record.actor_id = getattr(g, "actor_id", None)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped from the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output with the workflow context appended."""

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = []
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"{duration:.0f}ms")
        for key in ("actor_id", "task_id", "job_name"):
            value = getattr(record, key, None)
            if value:
                tags.append(f"{key.split('_')[0]}={value}")
        suffix = f" [{' '.join(tags)}]" if tags else ""
        line = f"{color}{ts} {record.levelname:<8}{_RESET} {record.name}: {record.getMessage()}{suffix}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON output unless the app runs with DEBUG or TESTING. The level comes
    from LOG_LEVEL, defaulting to INFO for JSON output and DEBUG otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    as_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app may run more than once per process (tests, CLI)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if as_json else "readable")
