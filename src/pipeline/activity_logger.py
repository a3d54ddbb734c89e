"""Activity logger: durable, per-execution log entries for the dashboard.

Writes are fire-and-forget. A failed write is reported to the module logger
(stderr by default) and otherwise ignored, so logging can never abort a run.
"""

import logging
import sqlite3
from typing import Any

from src.core.db import get_activity, insert_activity
from src.core.schemas import ActivityLogEntry, Severity

logger = logging.getLogger(__name__)

_LEVELS = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class ActivityLogger:
    """Appends structured activity entries keyed by execution id.

    Usage::

        activity = ActivityLogger(conn)
        activity.info(execution_id, "Starting search on linkedin", {"location": "Remote"})
        entries = activity.entries(execution_id)
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.failed_writes = 0

    def log(
        self,
        execution_id: str,
        severity: Severity,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            execution_id=execution_id,
            severity=severity,
            message=message,
            details=details or {},
        )
        logger.log(_LEVELS[severity], "[%s] %s: %s", execution_id, severity.upper(), message)
        try:
            insert_activity(self._conn, entry)
        except sqlite3.Error as e:
            self.failed_writes += 1
            logger.warning(
                "Could not store activity log for %s (%s): %s", execution_id, message, e,
            )
        return entry

    def debug(self, execution_id: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.log(execution_id, Severity.DEBUG, message, details)

    def info(self, execution_id: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.log(execution_id, Severity.INFO, message, details)

    def success(
        self, execution_id: str, message: str, details: dict[str, Any] | None = None,
    ) -> None:
        self.log(execution_id, Severity.SUCCESS, message, details)

    def warning(
        self, execution_id: str, message: str, details: dict[str, Any] | None = None,
    ) -> None:
        self.log(execution_id, Severity.WARNING, message, details)

    def error(self, execution_id: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.log(execution_id, Severity.ERROR, message, details)

    def entries(
        self,
        execution_id: str,
        severity: Severity | None = None,
    ) -> list[ActivityLogEntry]:
        """Return stored entries for an execution, oldest first."""
        return get_activity(self._conn, execution_id, severity)
