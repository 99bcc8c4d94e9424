"""Audit logging for credential access and API operations.

Audit records are JSON lines emitted through the ``claude_usage.audit``
logger. Nothing is written until ``enable_audit_logging`` attaches a
rotating file handler; the logger does not propagate to the root logger.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from claude_usage.config.security import sanitize_details

AUDIT_DIR = Path.home() / ".claude" / "audit"
AUDIT_LOG_FILE = AUDIT_DIR / "usage_poller.log"
AUDIT_MAX_SIZE_MB = 10
AUDIT_MAX_FILES = 5

audit_logger = logging.getLogger("claude_usage.audit")
audit_logger.propagate = False
audit_logger.setLevel(logging.INFO)


class AuditEvent:
    """Audit event type constants."""

    CREDENTIAL_READ = "credential.read"
    CREDENTIAL_FAILED = "credential.failed"

    API_SUCCESS = "api.success"
    API_ERROR = "api.error"
    API_RETRY = "api.retry"

    SESSION_START = "session.start"
    SESSION_END = "session.end"


class JsonLineFormatter(logging.Formatter):
    """Render an audit record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "event": getattr(record, "event", record.name),
            "message": record.getMessage(),
            "success": getattr(record, "success", True),
            "pid": record.process,
        }
        details = getattr(record, "details", None)
        if details:
            entry["details"] = sanitize_details(details)
        return json.dumps(entry)


_handler: logging.Handler | None = None


def enable_audit_logging(log_path: Path | None = None) -> Path:
    """Enable audit logging.

    Args:
        log_path: Optional custom path for the audit log.

    Returns:
        Path of the log file being written.
    """
    global _handler

    path = Path(log_path) if log_path else AUDIT_LOG_FILE
    if _handler is not None:
        disable_audit_logging()

    if not path.parent.exists():
        path.parent.mkdir(parents=True, mode=0o700)

    handler = RotatingFileHandler(
        path,
        maxBytes=AUDIT_MAX_SIZE_MB * 1024 * 1024,
        backupCount=AUDIT_MAX_FILES,
        encoding="utf-8",
    )
    handler.setFormatter(JsonLineFormatter())
    audit_logger.addHandler(handler)
    _handler = handler

    try:
        os.chmod(path, 0o600)
    except OSError:
        logging.getLogger(__name__).debug("Could not restrict permissions on %s", path)

    log_audit_event(
        AuditEvent.SESSION_START,
        "Audit logging enabled",
        details={"log_path": str(path)},
    )
    return path


def disable_audit_logging() -> None:
    """Disable audit logging and close the log file."""
    global _handler

    if _handler is None:
        return
    log_audit_event(AuditEvent.SESSION_END, "Audit logging disabled")
    audit_logger.removeHandler(_handler)
    _handler.close()
    _handler = None


def is_audit_enabled() -> bool:
    """Check if audit logging is enabled."""
    return _handler is not None


def log_audit_event(
    event_type: str,
    message: str,
    details: dict | None = None,
    success: bool = True,
) -> None:
    """Log an audit event.

    Args:
        event_type: Type of audit event (use AuditEvent constants).
        message: Human-readable description of the event.
        details: Optional additional structured data.
        success: Whether the operation was successful.
    """
    if _handler is None:
        return
    audit_logger.info(
        message,
        extra={"event": event_type, "details": details, "success": success},
    )


def log_credential_access(
    source: str,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a credential resolution attempt against one source."""
    details = {"source": source}
    if error:
        details["error"] = error
    log_audit_event(
        AuditEvent.CREDENTIAL_READ if success else AuditEvent.CREDENTIAL_FAILED,
        f"Credential access: {source}",
        details=details,
        success=success,
    )


def log_api_request(
    endpoint: str,
    method: str = "GET",
    success: bool = True,
    status_code: int | None = None,
    error: str | None = None,
    attempt: int = 1,
) -> None:
    """Log the outcome of one API attempt."""
    event = AuditEvent.API_SUCCESS if success else AuditEvent.API_ERROR

    details: dict = {"endpoint": endpoint, "method": method, "attempt": attempt}
    if status_code is not None:
        details["status_code"] = status_code
    if error:
        details["error"] = error

    log_audit_event(event, f"API {method} {endpoint}", details=details, success=success)


def log_api_retry(endpoint: str, attempt: int, delay: float, error: str) -> None:
    """Log that an attempt failed and another one is scheduled."""
    log_audit_event(
        AuditEvent.API_RETRY,
        f"Retrying {endpoint}",
        details={"endpoint": endpoint, "attempt": attempt, "delay": delay, "error": error},
        success=False,
    )


__all__ = [
    "AUDIT_LOG_FILE",
    "AuditEvent",
    "JsonLineFormatter",
    "enable_audit_logging",
    "disable_audit_logging",
    "is_audit_enabled",
    "log_audit_event",
    "log_credential_access",
    "log_api_request",
    "log_api_retry",
]
