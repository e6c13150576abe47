"""
Centralized logging configuration for the XP synchronizer.

Structured JSON in production, human-readable in development.
Call setup_logging() once when the host application starts.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from xpsync.core.config import get_settings

# Sync session id for the current task; set by SyncCoordinator
_session_id: ContextVar[Optional[str]] = ContextVar("xpsync_session_id", default=None)


def get_session_id() -> Optional[str]:
    return _session_id.get()


def set_session_id(session_id: Optional[str]) -> None:
    _session_id.set(session_id)


class SessionIDFilter(logging.Filter):
    """
    Logging filter that injects the sync session ID into all log records.

    Lets every message emitted while a coordinator is running be traced
    back to the user session that produced it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        session_id = getattr(record, "session_id", None)
        if session_id and session_id != "-":
            log_entry["session_id"] = session_id
        for key in ("user_id", "source", "amount", "endpoint", "status_code"):
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        return json.dumps(log_entry)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application-wide logging."""
    settings = get_settings()
    log_level = level or ("DEBUG" if settings.debug else "INFO")

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(SessionIDFilter())

    if settings.debug:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s [%(session_id)s]: %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = JSONFormatter()

    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in ("httpx", "httpcore", "h11", "posthog"):
        logging.getLogger(name).setLevel(logging.WARNING)
