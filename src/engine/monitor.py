"""Polling monitor for a single execution."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from src.core.schemas import ExecutionStatus, StatusReport

logger = logging.getLogger(__name__)

_FINAL = frozenset({ExecutionStatus.NOT_FOUND, ExecutionStatus.INDETERMINATE})


class StatusSource(Protocol):
    def get_status(self, execution_id: str) -> StatusReport: ...


async def monitor_execution(
    manager: StatusSource,
    execution_id: str,
    *,
    poll_interval: float = 2.0,
    max_polls: int = 150,
) -> AsyncIterator[StatusReport]:
    """Yield a status report every poll_interval seconds until the run ends.

    Raises:
        TimeoutError: If the execution is still live after max_polls polls.
    """
    for _ in range(max_polls):
        report = manager.get_status(execution_id)
        yield report
        if report.status.is_terminal or report.status in _FINAL:
            return
        await asyncio.sleep(poll_interval)

    msg = f"Execution {execution_id} still running after {max_polls} polls"
    raise TimeoutError(msg)
