"""CLI entry point for the search execution engine."""

import argparse
import asyncio
import contextlib
import json
import logging
import sys
import time
from datetime import datetime

from src.core.config import Settings
from src.core.db import init_db, list_executions, search_statistics
from src.core.errors import EngineError, NotFoundError
from src.core.schemas import ExecutionStatus, Severity, StatusReport
from src.engine.manager import TIME_RANGES, ExecutionManager
from src.engine.monitor import monitor_execution
from src.pipeline.activity_logger import ActivityLogger
from src.pipeline.result_store import ResultFilters, ResultStore
from src.sources import build_adapters

logger = logging.getLogger(__name__)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Search execution engine - run saved searches in the background",
    )
    subparsers = parser.add_subparsers(dest="command")

    # --- run subcommand (default) ---
    run_parser = subparsers.add_parser("run", help="Execute saved searches")
    _add_common(run_parser)
    run_parser.add_argument(
        "--search-id",
        action="append",
        dest="search_ids",
        help="Search to execute; repeatable (default: every active search)",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Cancel executions still running after this many seconds",
    )
    run_parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between status polls (default: engine.poll_interval_s)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be executed without running anything",
    )

    # --- history subcommand ---
    history_parser = subparsers.add_parser("history", help="List recent executions")
    _add_common(history_parser)
    history_parser.add_argument("--search-id", help="Only show executions of this search")
    history_parser.add_argument("--limit", type=int, default=20, help="Rows to show (default: 20)")

    # --- logs subcommand ---
    logs_parser = subparsers.add_parser("logs", help="Show the activity log of an execution")
    _add_common(logs_parser)
    logs_parser.add_argument("--execution-id", required=True, help="Execution to inspect")
    logs_parser.add_argument(
        "--severity",
        choices=[s.value for s in Severity],
        help="Only show entries of this severity",
    )

    # --- results subcommand ---
    results_parser = subparsers.add_parser("results", help="Show stored results of a search")
    _add_common(results_parser)
    results_parser.add_argument("--search-id", required=True, help="Search to inspect")
    results_parser.add_argument("--min-score", type=float, help="Minimum score (0-100)")
    results_parser.add_argument("--source", help="Only show results from this source")
    results_parser.add_argument(
        "--include-duplicates",
        action="store_true",
        help="Include results flagged as duplicates",
    )
    results_parser.add_argument("--limit", type=int, help="Maximum rows to show")
    results_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    # --- stats subcommand ---
    stats_parser = subparsers.add_parser("stats", help="Summarize recent executions")
    _add_common(stats_parser)
    stats_parser.add_argument(
        "--range",
        dest="time_range",
        choices=list(TIME_RANGES),
        default="week",
        help="Time window to summarize (default: week)",
    )
    stats_parser.add_argument("--json", action="store_true", help="Print statistics as JSON")

    # --- backward compat: top-level flags for run ---
    parser.add_argument("--config", default="config/settings.yaml", help=argparse.SUPPRESS)
    parser.add_argument("--dry-run", action="store_true", help=argparse.SUPPRESS)
    parser.add_argument("--verbose", "-v", action="store_true", help=argparse.SUPPRESS)

    args = parser.parse_args(argv)

    # Default to run when no subcommand given
    if args.command is None:
        args.command = "run"
        args.search_ids = None
        args.timeout = None
        args.poll_interval = None

    return args


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


def dry_run(settings: Settings, search_ids: list[str] | None) -> None:
    """Print what would happen without executing anything."""
    adapters = build_adapters(settings)
    searches = [s for s in settings.searches if not search_ids or s.id in search_ids]

    print(f"[DRY RUN] {len(searches)} searches selected")
    for search in searches:
        state = "active" if search.is_active else "inactive"
        print(f"[DRY RUN] '{search.id}' ({state}): '{search.job_title}' in "
              f"{search.location or 'Remote'}")
        for source in search.sources:
            kind = settings.source_config(source).kind if source in adapters else "missing"
            print(f"  Source {source}: {kind} adapter")
        print(f"  Filters: {search.filters.model_dump(exclude_defaults=True)}")
        print(f"  Max results per source: {search.max_results_per_source}")
        print(f"  Skip duplicates: {search.skip_duplicates}")

    print("[DRY RUN] Would execute 0 searches (dry-run)")


def _print_progress(report: StatusReport, label: str) -> None:
    p = report.progress
    if p is None:
        return
    print(f"  [{label}] {p.current_step} ({p.completed_steps}/{p.total_steps}, "
          f"{p.results_found} results)")


async def follow(
    manager: ExecutionManager,
    execution_id: str,
    label: str,
    *,
    poll_interval: float,
    max_polls: int,
    timeout: float | None,
) -> StatusReport:
    """Poll one execution until it ends, cancelling it after timeout seconds."""
    deadline = time.monotonic() + timeout if timeout else None
    last_step = None
    try:
        async for report in monitor_execution(
            manager, execution_id, poll_interval=poll_interval, max_polls=max_polls,
        ):
            if report.progress and report.progress.current_step != last_step:
                last_step = report.progress.current_step
                _print_progress(report, label)
            if deadline is not None and time.monotonic() >= deadline:
                print(f"  [{label}] Timed out after {timeout}s, cancelling")
                with contextlib.suppress(NotFoundError):
                    await manager.cancel(execution_id)
                deadline = None
    except TimeoutError as e:
        logger.warning("%s", e)
        with contextlib.suppress(NotFoundError):
            await manager.cancel(execution_id)
    return await manager.wait(execution_id)


async def run(
    settings: Settings,
    search_ids: list[str] | None,
    timeout: float | None,
    poll_interval: float | None,
) -> int:
    """Start the selected searches and follow them to completion."""
    conn = init_db(settings.database.path)
    manager = ExecutionManager(settings, conn)
    interval = poll_interval if poll_interval is not None else settings.engine.poll_interval_s

    try:
        started = await manager.start_all(search_ids)
        if not started:
            print("No searches started.")
            return 1

        reports = await asyncio.gather(*(
            follow(
                manager,
                s.execution_id,
                s.search_id,
                poll_interval=interval,
                max_polls=settings.engine.max_polls,
                timeout=timeout,
            )
            for s in started
        ))
    finally:
        await manager.shutdown()
        conn.close()

    print("\nExecution summary:")
    exit_code = 0
    for report in reports:
        execution = report.execution
        if execution is None:
            print(f"  {report.execution_id}: {report.status} ({report.error or 'no record'})")
            exit_code = 1
            continue
        print(f"  '{execution.search_id}' [{execution.status}] "
              f"{execution.total_results_found} results, "
              f"{execution.new_results_found} new, "
              f"{execution.duplicate_results_filtered} duplicates, "
              f"{execution.sources_failed} sources failed "
              f"in {execution.execution_time_ms}ms")
        if execution.error_message:
            print(f"    {execution.error_message}")
        if execution.status == ExecutionStatus.FAILED:
            exit_code = 1
    return exit_code


# ---------------------------------------------------------------------------
# history / logs / results / stats
# ---------------------------------------------------------------------------


def cmd_history(settings: Settings, args: argparse.Namespace) -> None:
    conn = init_db(settings.database.path)
    try:
        executions = list_executions(conn, args.search_id, args.limit)
    finally:
        conn.close()

    if not executions:
        print("No executions recorded.")
        return
    for e in executions:
        duration = f"{e.execution_time_ms}ms" if e.execution_time_ms is not None else "-"
        print(f"{e.started_at:%Y-%m-%d %H:%M:%S}  {e.id}  {e.search_id:<20} "
              f"{e.status:<10} {e.total_results_found:>4} results  {duration}")
        if e.error_message:
            print(f"    {e.error_message}")


def cmd_logs(settings: Settings, args: argparse.Namespace) -> None:
    conn = init_db(settings.database.path)
    try:
        severity = Severity(args.severity) if args.severity else None
        entries = ActivityLogger(conn).entries(args.execution_id, severity)
    finally:
        conn.close()

    if not entries:
        print(f"No activity recorded for execution {args.execution_id}.")
        return
    for entry in entries:
        print(f"{entry.timestamp:%H:%M:%S} [{entry.severity.upper():<7}] {entry.message}")
        if entry.details:
            print(f"    {json.dumps(entry.details, default=str)}")


def cmd_results(settings: Settings, args: argparse.Namespace) -> None:
    conn = init_db(settings.database.path)
    try:
        records = ResultStore(conn).query_by_search(
            args.search_id,
            ResultFilters(
                source=args.source,
                min_score=args.min_score,
                include_duplicates=args.include_duplicates,
                limit=args.limit,
            ),
        )
    finally:
        conn.close()

    if args.json:
        print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return
    if not records:
        print(f"No results stored for search '{args.search_id}'.")
        return
    for r in records:
        flag = " (duplicate)" if r.is_duplicate else ""
        print(f"{r.score:5.1f}  [{r.source}] {r.title} @ {r.organization}{flag}")
        print(f"       {r.url}")


def cmd_stats(settings: Settings, args: argparse.Namespace) -> None:
    conn = init_db(settings.database.path)
    try:
        stats = search_statistics(conn, datetime.now() - TIME_RANGES[args.time_range])
    finally:
        conn.close()

    if args.json:
        print(json.dumps(stats.model_dump(mode="json"), indent=2))
        return
    print(f"Executions since {stats.since:%Y-%m-%d %H:%M} ({args.time_range})")
    print(f"  Total: {stats.total_executions}  Active: {stats.active_executions}  "
          f"Completed: {stats.completed_executions}  Failed: {stats.failed_executions}  "
          f"Cancelled: {stats.cancelled_executions}")
    print(f"  Average time: {stats.avg_execution_time_ms:.0f}ms  "
          f"Results: {stats.total_results_found}")
    if stats.top_sources:
        print("  Top sources: " + ", ".join(f"{s.source} ({s.count})" for s in stats.top_sources))
    busiest = [f"{hour:02d}:00 ({n})" for hour, n in enumerate(stats.hourly_distribution) if n]
    if busiest:
        print("  By hour: " + ", ".join(busiest))


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "history":
            cmd_history(settings, args)
        elif args.command == "logs":
            cmd_logs(settings, args)
        elif args.command == "results":
            cmd_results(settings, args)
        elif args.command == "stats":
            cmd_stats(settings, args)
        elif args.dry_run:
            dry_run(settings, args.search_ids)
        else:
            sys.exit(asyncio.run(run(settings, args.search_ids, args.timeout, args.poll_interval)))
    except (ValueError, EngineError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
