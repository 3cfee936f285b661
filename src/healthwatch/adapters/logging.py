"""Python logging handler adapter for the security audit log.

This adapter bridges Python's standard library logging module to the
SecurityAuditLog: records carrying an ``event_type`` extra become
security log entries.
"""

import asyncio
import logging
import traceback
from typing import Any

from healthwatch.core.models import SecurityLogEntry, Severity
from healthwatch.core.security_log import SecurityAuditLog

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

# Extras that map onto SecurityLogEntry fields instead of metadata
_ENTRY_FIELDS = ("event_type", "actor", "ip_address", "user_agent")


def severity_for_level(levelno: int) -> Severity:
    """WARNING -> warning, ERROR and above -> critical, anything else -> info."""
    if levelno >= logging.ERROR:
        return Severity.CRITICAL
    if levelno >= logging.WARNING:
        return Severity.WARNING
    return Severity.INFO


class AuditLogHandler(logging.Handler):
    """Logging handler that appends security records to a SecurityAuditLog.

    Example:
        ```python
        handler = AuditLogHandler(engine.security_log)
        logging.getLogger("myapp.auth").addHandler(handler)
        logger.warning("Login failed", extra={"event_type": "auth_failure", "actor": "bob"})
        ```

    Records without an ``event_type`` extra are ignored. Inside a running
    event loop the append is scheduled as a task; otherwise it runs to
    completion before ``emit`` returns.
    """

    def __init__(self, audit_log: SecurityAuditLog, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._audit_log = audit_log
        self._pending: set[asyncio.Task[Any]] = set()

    def to_entry(self, record: logging.LogRecord) -> SecurityLogEntry | None:
        """Build the entry for a record, or None if it is not a security record."""
        event_type = getattr(record, "event_type", None)
        if not isinstance(event_type, str) or not event_type:
            return None

        metadata: dict[str, str | int | float | bool] = {"logger": record.name}
        for key, value in record.__dict__.items():
            if key in _STANDARD_LOGRECORD_ATTRS or key in _ENTRY_FIELDS:
                continue
            if isinstance(value, (str, int, float, bool)):
                metadata[key] = value

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                metadata["exc_type"] = exc_type.__name__
            if exc_value is not None:
                metadata["exc_message"] = str(exc_value)
            if exc_tb is not None:
                metadata["exc_traceback"] = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )

        return SecurityLogEntry(
            event_type=event_type,
            severity=severity_for_level(record.levelno),
            description=record.getMessage(),
            actor=getattr(record, "actor", None),
            ip_address=getattr(record, "ip_address", None),
            user_agent=getattr(record, "user_agent", None),
            metadata=metadata,
            created_at=record.created,
        )

    def emit(self, record: logging.LogRecord) -> None:
        """Append the record to the audit log.

        Args:
            record: The log record to emit.
        """
        entry = self.to_entry(record)
        if entry is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                asyncio.run(self._audit_log.append(entry))
            except Exception:
                self.handleError(record)
            return
        task = loop.create_task(self._audit_log.append(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for appends scheduled from inside the event loop."""
        if self._pending:
            await asyncio.gather(*self._pending)
