"""Structured logging and audit trail for ollama_agent.

Provides:
- JSON file handler with rotation (~/.ollama-agent/logs/)
- Dedicated audit log for tool executions
- Session handler that feeds the /logs command
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

from ollama_agent.config import DATA_DIR

if TYPE_CHECKING:
    from ollama_agent.session import SessionContext

LOGS_DIR = DATA_DIR / "logs"
AUDIT_LOG_FILE = LOGS_DIR / "audit.jsonl"
APP_LOG_FILE = LOGS_DIR / "ollama-agent.log"

# Maximum log file size (5 MB) and backup count
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

ROOT_LOGGER_NAME = "ollama_agent"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        # Include extra fields
        for key in ("tool_name", "tool_args", "tool_result", "success", "duration_s", "model", "attempt", "status"):
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        return json.dumps(entry, default=str)


class SessionLogHandler(logging.Handler):
    """Copies log records into a SessionContext's current-prompt buffer."""

    def __init__(self, context: SessionContext, level: int = logging.DEBUG):
        super().__init__(level)
        self.context = context
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stamp = datetime.fromtimestamp(record.created).isoformat()
            self.context.add_log(f"{stamp} {self.format(record)}")
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False) -> None:
    """Configure application-wide logging.

    - File handler: JSON lines to ~/.ollama-agent/logs/ollama-agent.log (with rotation)
    - Console handler: only if verbose=True, WARNING+ level
    """
    LOGS_DIR.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(logging.DEBUG)

    # Remove existing file/console handlers (idempotent), keep session handlers
    for handler in list(root.handlers):
        if not isinstance(handler, SessionLogHandler):
            root.removeHandler(handler)

    file_handler = logging.handlers.RotatingFileHandler(
        str(APP_LOG_FILE),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JSONFormatter())
    root.addHandler(file_handler)

    if verbose:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
        root.addHandler(console_handler)


def attach_session_handler(context: SessionContext) -> SessionLogHandler:
    """Route ollama_agent log records into *context*'s log buffer."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.level == logging.NOTSET or root.level > logging.DEBUG:
        root.setLevel(logging.DEBUG)
    handler = SessionLogHandler(context)
    root.addHandler(handler)
    return handler


def detach_session_handler(handler: SessionLogHandler) -> None:
    logging.getLogger(ROOT_LOGGER_NAME).removeHandler(handler)


def get_audit_logger() -> logging.Logger:
    """Get the dedicated audit logger for tool executions."""
    logger = logging.getLogger("ollama_agent.audit")
    if not any(
        isinstance(h, logging.handlers.RotatingFileHandler)
        and str(AUDIT_LOG_FILE) in getattr(h, "baseFilename", "")
        for h in logger.handlers
    ):
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            str(AUDIT_LOG_FILE),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def log_tool_execution(
    tool_name: str,
    tool_args: dict,
    result: str,
    success: bool,
    duration_s: float,
) -> None:
    """Log a tool execution to the audit trail."""
    logger = get_audit_logger()
    result_preview = result[:500] if len(result) > 500 else result
    logger.info(
        "Tool executed: %s",
        tool_name,
        extra={
            "tool_name": tool_name,
            "tool_args": tool_args,
            "tool_result": result_preview,
            "success": success,
            "duration_s": round(duration_s, 3),
        },
    )
