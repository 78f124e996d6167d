"""
Structured logging configuration.

Two renderings of the same records:

    readable  — coloured single line for a terminal; portal context
                (actor, task, department, state version) appended in brackets
    json      — one object per line for log shippers; context as top-level keys

The format follows LOG_FORMAT when set, otherwise ``json`` outside
debug/testing. The level comes from LOG_LEVEL (config, then environment).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Request fields set by middleware/timing.py
_REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")

# Portal context passed via ``extra=`` by the services
_CONTEXT_FIELDS = {
    "actor_id": "actor",
    "task_id": "task",
    "department_code": "dept",
    "state_version": "v",
}

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


def _present(record, names):
    return {name: getattr(record, name) for name in names if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped with the record's own creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_present(record, _REQUEST_FIELDS))
        entry.update(_present(record, _CONTEXT_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:01:09 INFO     kpi_portal.services.portal: message [actor=u_admin v=7] 12ms``"""

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.colour:
            level = f"{_LEVEL_COLOURS.get(record.levelno, '')}{level}{_RESET}"

        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        context = _present(record, _CONTEXT_FIELDS)
        if context:
            line += " [" + " ".join(f"{_CONTEXT_FIELDS[k]}={v}" for k, v in context.items()) + "]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" {duration:.0f}ms"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for *app*."""
    testing = app.config.get("TESTING", False)
    verbose = app.config.get("DEBUG", False) or testing

    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL")
                  or ("DEBUG" if verbose else "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = (app.config.get("LOG_FORMAT") or ("readable" if verbose else "json")).lower()
    if fmt == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(colour=sys.stderr.isatty())

    # Cleared first so an app created per test does not stack handlers.
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
