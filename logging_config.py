"""
Logging for the client portal.

Call setup_logging() once at startup (app.create_app does). Production
writes one JSON object per line so the platform log viewer can filter on
fields; locally the console gets short colored lines. Either way a JSON
copy goes to <data dir>/logs/portal.log.
"""
import os
import json
import logging
import logging.handlers
from datetime import datetime, timezone

from flask import g, has_request_context, request

from portal.core.config import data_dir, is_production

# Attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class RequestContextFilter(logging.Filter):
    """Tag records made while serving a request with its path and client."""

    def filter(self, record):
        if has_request_context():
            record.path = request.path
            session = g.get("client_session")
            if session:
                record.client = session.get("customerId")
        return True


def _extras(record) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_FIELDS}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanFormatter(logging.Formatter):
    """``12:01:33 W portal.quote [/api/quote/..] message`` with a color per level."""
    COLORS = {"DEBUG": "36", "INFO": "32", "WARNING": "33", "ERROR": "31", "CRITICAL": "35"}

    def format(self, record):
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        path = f" [{record.path}]" if getattr(record, "path", None) else ""
        line = f"{stamp} {record.levelname[0]} {record.name}{path} {record.getMessage()}"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        color = self.COLORS.get(record.levelname)
        return f"\033[{color}m{line}\033[0m" if color else line


def setup_logging(level=None, json_logs=None, log_file=True):
    """
    Configure the root logger.

    Args:
        level: LOG_LEVEL env var or INFO when omitted
        json_logs: JSON console lines; defaults to on in production
        log_file: also write the rotating JSON file in the data directory
    """
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_logs is None:
        json_logs = is_production()

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()
    context = RequestContextFilter()

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    console.addFilter(context)
    root.addHandler(console)

    if log_file:
        log_dir = os.path.join(data_dir(), "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "portal.log"), maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        except OSError as e:
            logging.getLogger("portal").warning("File logging disabled (%s): %s", log_dir, e)
        else:
            handler.setFormatter(JSONFormatter())
            handler.addFilter(context)
            root.addHandler(handler)

    for name in ("urllib3", "werkzeug", "PIL", "reportlab", "fontTools"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("portal").info("Logging ready", extra={"log_level": level, "json": json_logs})
