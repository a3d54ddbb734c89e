"""Registry of live executions owned by one ExecutionManager.

The registry is the only shared mutable state inside the engine. Every access
goes through a lock so status reads from other threads stay consistent.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime

from src.core.errors import ConflictError
from src.core.schemas import ExecutionStatus
from src.engine.cancellation import CancellationToken
from src.engine.progress import ProgressTracker

logger = logging.getLogger(__name__)


@dataclass
class RunningExecution:
    """Bookkeeping for one in-flight execution."""

    execution_id: str
    search_id: str
    token: CancellationToken
    tracker: ProgressTracker
    started_at: datetime = field(default_factory=datetime.now)
    started_monotonic: float = field(default_factory=time.monotonic)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    task: asyncio.Task[None] | None = None

    @property
    def uptime_ms(self) -> int:
        return int((time.monotonic() - self.started_monotonic) * 1000)


class ExecutionRegistry:
    """Lock-guarded map of execution id to RunningExecution."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, RunningExecution] = {}

    def register(self, entry: RunningExecution) -> None:
        """Add an entry. Raises ConflictError if its search is already running."""
        with self._lock:
            for other in self._entries.values():
                if other.search_id == entry.search_id:
                    msg = (
                        f"Search '{entry.search_id}' is already running "
                        f"(execution {other.execution_id})"
                    )
                    raise ConflictError(msg, {"execution_id": other.execution_id})
            self._entries[entry.execution_id] = entry
        logger.debug("Registered execution %s (search %s)", entry.execution_id, entry.search_id)

    def get(self, execution_id: str) -> RunningExecution | None:
        with self._lock:
            return self._entries.get(execution_id)

    def mark_cancelling(self, execution_id: str) -> bool | None:
        """Flip an entry to cancelling.

        Returns True if flipped, False if it was already cancelling,
        None if the execution is not tracked.
        """
        with self._lock:
            entry = self._entries.get(execution_id)
            if entry is None:
                return None
            if entry.status == ExecutionStatus.CANCELLING:
                return False
            entry.status = ExecutionStatus.CANCELLING
            return True

    def remove(self, execution_id: str) -> RunningExecution | None:
        with self._lock:
            entry = self._entries.pop(execution_id, None)
        if entry is not None:
            logger.debug("Removed execution %s from registry", execution_id)
        return entry

    def snapshot(self) -> list[RunningExecution]:
        """Return a point-in-time copy of the live entries."""
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, execution_id: object) -> bool:
        with self._lock:
            return execution_id in self._entries
