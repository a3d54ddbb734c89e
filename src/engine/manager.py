"""Execution manager: the public surface of the search engine.

Starts executions as background asyncio tasks, answers status queries from the
live registry or the durable execution log, handles cooperative cancellation,
and writes every execution's terminal state exactly once.

Usage::

    conn = init_db(settings.database.path)
    manager = ExecutionManager(settings, conn)
    started = await manager.start("python-remote")
    report = manager.get_status(started.execution_id)
    await manager.cancel(started.execution_id)
    final = await manager.wait(started.execution_id)
"""

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta

from src.core.config import SearchSpec, Settings
from src.core.db import (
    fail_open_executions,
    finish_execution,
    get_execution,
    insert_execution,
    list_executions,
    search_statistics,
    touch_execution,
)
from src.core.errors import CancellationError, ConflictError, NotFoundError, PersistenceError
from src.core.schemas import (
    ActivityLogEntry,
    Execution,
    ExecutionStatistics,
    ExecutionStatus,
    ResultRecord,
    Severity,
    StartResult,
    StatusReport,
)
from src.engine.cancellation import CancellationToken
from src.engine.progress import ProgressTracker
from src.engine.registry import ExecutionRegistry, RunningExecution
from src.pipeline.activity_logger import ActivityLogger
from src.pipeline.llm_scorer import build_scorer
from src.pipeline.orchestrator import ExecutionStats, SearchOrchestrator
from src.pipeline.result_store import ResultFilters, ResultStore
from src.pipeline.scorer import Scorer
from src.sources import SourceAdapter, build_adapters

logger = logging.getLogger(__name__)

ORPHAN_MESSAGE = "Execution interrupted: engine process exited"
NOT_FOUND_MESSAGE = "Search not found or already completed"

TIME_RANGES = {
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}


class ExecutionManager:
    """Owns every execution started through it.

    Collaborators default to the ones described by ``settings``; tests inject
    their own adapters, scorer, or registry.
    """

    def __init__(
        self,
        settings: Settings,
        conn: sqlite3.Connection,
        *,
        adapters: Mapping[str, SourceAdapter] | None = None,
        scorer: Scorer | None = None,
        registry: ExecutionRegistry | None = None,
        recover: bool = True,
    ) -> None:
        self._settings = settings
        self._conn = conn
        self._adapters = adapters if adapters is not None else build_adapters(settings)
        self._scorer = scorer or build_scorer(settings.scoring)
        self._registry = registry or ExecutionRegistry()
        # Written to the owner column of every execution this manager starts
        self.owner_id = uuid.uuid4().hex
        self.activity = ActivityLogger(conn)
        self.store = ResultStore(conn)
        # execution_id -> reason its terminal write never landed
        self._indeterminate: dict[str, str] = {}
        if recover:
            self.recover_orphans()

    # -----------------------------------------------------------------------
    # Start
    # -----------------------------------------------------------------------

    async def start(self, search_id: str, trigger: str = "manual") -> StartResult:
        """Start a search in the background and return its execution id.

        Raises:
            NotFoundError: If the search is unknown or inactive.
            ConflictError: If the search already has a live execution.
            PersistenceError: If the execution record cannot be created.
        """
        spec = self._settings.get_search(search_id)
        if spec is None:
            msg = f"Search '{search_id}' not found"
            raise NotFoundError(msg, {"search_id": search_id})
        if not spec.is_active:
            msg = f"Search '{search_id}' is not active"
            raise NotFoundError(msg, {"search_id": search_id})

        execution_id = uuid.uuid4().hex
        entry = RunningExecution(
            execution_id=execution_id,
            search_id=search_id,
            token=CancellationToken(),
            tracker=ProgressTracker(execution_id),
        )
        self._registry.register(entry)

        try:
            insert_execution(
                self._conn,
                Execution(
                    id=execution_id,
                    search_id=search_id,
                    status=ExecutionStatus.RUNNING,
                    trigger=trigger,
                    started_at=entry.started_at,
                    owner=self.owner_id,
                    heartbeat_at=entry.started_at,
                ),
            )
        except sqlite3.Error as e:
            self._registry.remove(execution_id)
            raise PersistenceError("create execution", str(e)) from e

        self.activity.info(
            execution_id,
            f"Search '{spec.name or spec.id}' started",
            {
                "search_id": spec.id,
                "job_title": spec.job_title,
                "location": spec.location or "Remote",
                "sources": spec.sources,
                "trigger": trigger,
            },
        )
        entry.task = asyncio.create_task(
            self._execute(entry, spec), name=f"search-execution-{execution_id}",
        )
        logger.info("Started execution %s for search '%s'", execution_id, search_id)
        return StartResult(execution_id=execution_id, search_id=search_id)

    async def start_all(self, search_ids: list[str] | None = None) -> list[StartResult]:
        """Start every active search (or the given ones), skipping conflicts."""
        ids = search_ids or [s.id for s in self._settings.searches if s.is_active]
        started: list[StartResult] = []
        for search_id in ids:
            try:
                started.append(await self.start(search_id))
            except ConflictError as e:
                logger.warning("Skipping '%s': %s", search_id, e)
        return started

    # -----------------------------------------------------------------------
    # Status
    # -----------------------------------------------------------------------

    def get_status(self, execution_id: str) -> StatusReport:
        """Live progress while running, the durable record afterwards."""
        entry = self._registry.get(execution_id)
        if entry is not None:
            return StatusReport(
                execution_id=execution_id,
                status=entry.status,
                progress=entry.tracker.snapshot,
                uptime_ms=entry.uptime_ms,
            )

        if execution_id in self._indeterminate:
            return StatusReport(
                execution_id=execution_id,
                status=ExecutionStatus.INDETERMINATE,
                error=self._indeterminate[execution_id],
            )

        try:
            execution = get_execution(self._conn, execution_id)
        except sqlite3.Error as e:
            logger.warning("Could not read execution %s: %s", execution_id, e)
            return StatusReport(
                execution_id=execution_id,
                status=ExecutionStatus.INDETERMINATE,
                error=str(e),
            )
        if execution is None:
            return StatusReport(execution_id=execution_id, status=ExecutionStatus.NOT_FOUND)

        return StatusReport(
            execution_id=execution_id,
            status=execution.status,
            uptime_ms=execution.execution_time_ms or 0,
            execution=execution,
            error=execution.error_message,
        )

    def running(self) -> list[str]:
        """Ids of the executions currently live in this manager."""
        return [e.execution_id for e in self._registry.snapshot()]

    def list_executions(self, search_id: str | None = None, limit: int = 20) -> list[Execution]:
        return list_executions(self._conn, search_id, limit)

    def activity_log(
        self, execution_id: str, severity: Severity | None = None,
    ) -> list[ActivityLogEntry]:
        return self.activity.entries(execution_id, severity)

    def results(self, search_id: str, filters: ResultFilters | None = None) -> list[ResultRecord]:
        return self.store.query_by_search(search_id, filters)

    def statistics(self, time_range: str = "week") -> ExecutionStatistics:
        """Aggregate executions started within the last day, week, or month.

        Raises:
            ValueError: If the time range is not one of TIME_RANGES.
        """
        window = TIME_RANGES.get(time_range)
        if window is None:
            msg = f"Unknown time range '{time_range}'. Expected one of: {', '.join(TIME_RANGES)}"
            raise ValueError(msg)
        return search_statistics(self._conn, datetime.now() - window)

    # -----------------------------------------------------------------------
    # Cancellation and waiting
    # -----------------------------------------------------------------------

    async def cancel(self, execution_id: str) -> dict[str, str]:
        """Request cooperative cancellation.

        Raises:
            NotFoundError: If no live execution has this id.
        """
        entry = self._registry.get(execution_id)
        flipped = self._registry.mark_cancelling(execution_id) if entry else None
        if entry is None or flipped is None:
            raise NotFoundError(NOT_FOUND_MESSAGE, {"execution_id": execution_id})
        if not flipped:
            return {"message": "Search is already being cancelled"}

        entry.token.cancel("cancel requested")
        self.activity.info(execution_id, "Search cancellation requested")
        return {"message": "Search cancellation initiated"}

    async def wait(self, execution_id: str, timeout: float | None = None) -> StatusReport:
        """Block until the execution leaves the registry, then report its status."""
        entry = self._registry.get(execution_id)
        if entry is not None and entry.task is not None:
            await asyncio.wait({entry.task}, timeout=timeout)
        return self.get_status(execution_id)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel every live execution and wait for its terminal write."""
        entries = self._registry.snapshot()
        if not entries:
            return
        logger.info("Shutting down %d running execution(s)", len(entries))
        for entry in entries:
            self._registry.mark_cancelling(entry.execution_id)
            entry.token.cancel("engine shutdown")

        tasks = {e.task for e in entries if e.task is not None}
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

    def recover_orphans(self) -> int:
        """Fail execution rows left open by an engine that stopped heartbeating.

        Rows owned by this manager, and rows of other managers whose heartbeat
        is newer than ``engine.orphan_after_s``, are left alone.
        """
        stale_before = datetime.now() - timedelta(seconds=self._settings.engine.orphan_after_s)
        count = fail_open_executions(
            self._conn,
            ORPHAN_MESSAGE,
            stale_before=stale_before,
            exclude_owner=self.owner_id,
        )
        if count:
            logger.warning("Marked %d interrupted execution(s) as failed", count)
        return count

    # -----------------------------------------------------------------------
    # Background task
    # -----------------------------------------------------------------------

    async def _execute(self, entry: RunningExecution, spec: SearchSpec) -> None:
        stats = ExecutionStats()
        status = ExecutionStatus.COMPLETED
        error: str | None = None
        heartbeat = asyncio.create_task(self._heartbeat(entry.execution_id))
        try:
            orchestrator = SearchOrchestrator(
                execution_id=entry.execution_id,
                spec=spec,
                adapters=self._adapters,
                store=self.store,
                activity=self.activity,
                tracker=entry.tracker,
                token=entry.token,
                scorer=self._scorer,
                engine=self._settings.engine,
                stats=stats,
            )
            await orchestrator.run()
        except CancellationError as e:
            status, error = ExecutionStatus.CANCELLED, e.message
        except asyncio.CancelledError:
            status, error = ExecutionStatus.CANCELLED, "Search task cancelled"
            raise
        except Exception as e:
            logger.exception("Execution %s failed", entry.execution_id)
            status, error = ExecutionStatus.FAILED, str(e) or type(e).__name__
        finally:
            heartbeat.cancel()
            self._finish(entry, stats, status, error)

    async def _heartbeat(self, execution_id: str) -> None:
        interval = self._settings.engine.heartbeat_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                touch_execution(self._conn, execution_id, datetime.now())
            except sqlite3.Error as e:
                logger.warning("Heartbeat for %s failed: %s", execution_id, e)

    def _finish(
        self,
        entry: RunningExecution,
        stats: ExecutionStats,
        status: ExecutionStatus,
        error: str | None,
    ) -> None:
        execution_time_ms = entry.uptime_ms
        summary = {
            "total_results": stats.total_results_found,
            "new_results": stats.new_results_found,
            "duplicates": stats.duplicate_results_filtered,
            "sources_failed": stats.sources_failed,
            "execution_time_ms": execution_time_ms,
        }
        try:
            self._write_terminal(entry.execution_id, stats, status, error, execution_time_ms)
            if status == ExecutionStatus.COMPLETED:
                self.activity.success(
                    entry.execution_id, "Search completed successfully", summary,
                )
            elif status == ExecutionStatus.CANCELLED:
                self.activity.info(
                    entry.execution_id, "Search cancelled", {**summary, "reason": error},
                )
            else:
                self.activity.error(
                    entry.execution_id, f"Search failed: {error}", {**summary, "error": error},
                )
        finally:
            self._registry.remove(entry.execution_id)
        logger.info(
            "Execution %s %s in %dms (%d results)",
            entry.execution_id, status, execution_time_ms, stats.total_results_found,
        )

    def _write_terminal(
        self,
        execution_id: str,
        stats: ExecutionStats,
        status: ExecutionStatus,
        error: str | None,
        execution_time_ms: int,
    ) -> None:
        attempts = 1 + self._settings.engine.terminal_write_retries
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                updated = finish_execution(
                    self._conn,
                    execution_id,
                    status=status,
                    completed_at=datetime.now(),
                    execution_time_ms=execution_time_ms,
                    total_results_found=stats.total_results_found,
                    new_results_found=stats.new_results_found,
                    duplicate_results_filtered=stats.duplicate_results_filtered,
                    sources_failed=stats.sources_failed,
                    error_message=error,
                )
            except sqlite3.Error as e:
                last_error = str(e)
                logger.warning(
                    "Terminal write for %s failed (attempt %d/%d): %s",
                    execution_id, attempt, attempts, e,
                )
                continue
            if not updated:
                self._record_lost_write(execution_id, status)
            return

        self._indeterminate[execution_id] = f"Terminal state could not be recorded: {last_error}"
        logger.error(
            "Execution %s ended %s but its record could not be written", execution_id, status,
        )

    def _record_lost_write(self, execution_id: str, status: ExecutionStatus) -> None:
        try:
            current = get_execution(self._conn, execution_id)
        except sqlite3.Error as e:
            recorded = f"unreadable ({e})"
        else:
            recorded = current.status.value if current is not None else "missing"
        self._indeterminate[execution_id] = (
            f"Execution ended {status.value} but its record was already finalized as {recorded}"
        )
        logger.warning(
            "Execution %s ended %s but its record is already %s", execution_id, status, recorded,
        )
