"""Progress tracker: the in-memory step/result-count view of a running execution.

Snapshots are immutable and replaced on every update, so readers never see a
half-written value. completed_steps and results_found never move backwards.
"""

import logging
import threading

from src.core.schemas import TOTAL_STEPS, ProgressSnapshot

logger = logging.getLogger(__name__)

_UNSET = object()


class ProgressTracker:
    """Holds the latest ProgressSnapshot for one execution."""

    def __init__(self, execution_id: str, total_steps: int = TOTAL_STEPS) -> None:
        self._execution_id = execution_id
        self._lock = threading.Lock()
        self._snapshot = ProgressSnapshot(total_steps=total_steps)

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot

    def update(
        self,
        current_step: str,
        *,
        completed_steps: int | None = None,
        results_found: int | None = None,
        current_source: object = _UNSET,
        current_url: object = _UNSET,
    ) -> ProgressSnapshot:
        """Replace the snapshot, clamping counters so they stay monotonic."""
        with self._lock:
            prev = self._snapshot
            completed = prev.completed_steps
            if completed_steps is not None:
                completed = min(max(completed_steps, prev.completed_steps), prev.total_steps)
            found = prev.results_found
            if results_found is not None:
                found = max(results_found, prev.results_found)
            self._snapshot = ProgressSnapshot(
                current_step=current_step,
                completed_steps=completed,
                total_steps=prev.total_steps,
                results_found=found,
                current_source=(
                    prev.current_source if current_source is _UNSET else current_source
                ),
                current_url=prev.current_url if current_url is _UNSET else current_url,
            )
            snapshot = self._snapshot

        logger.debug(
            "Progress %s: %s (%d/%d, %d results)",
            self._execution_id, snapshot.current_step,
            snapshot.completed_steps, snapshot.total_steps, snapshot.results_found,
        )
        return snapshot
