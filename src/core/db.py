"""SQLite database layer for executions, activity logs, and search results."""

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from src.core.schemas import (
    ActivityLogEntry,
    Execution,
    ExecutionStatistics,
    ExecutionStatus,
    ResultRecord,
    ResultState,
    Severity,
    SourceCount,
    statuses_leading_to,
)

_EXECUTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS executions (
    id                          TEXT    PRIMARY KEY,
    search_id                   TEXT    NOT NULL,
    status                      TEXT    NOT NULL DEFAULT 'queued',
    trigger                     TEXT    NOT NULL DEFAULT 'manual',
    started_at                  TEXT    NOT NULL,
    completed_at                TEXT,
    execution_time_ms           INTEGER,
    total_results_found         INTEGER NOT NULL DEFAULT 0,
    new_results_found           INTEGER NOT NULL DEFAULT 0,
    duplicate_results_filtered  INTEGER NOT NULL DEFAULT 0,
    sources_failed              INTEGER NOT NULL DEFAULT 0,
    error_message               TEXT,
    owner                       TEXT,
    heartbeat_at                TEXT
);
"""

_ACTIVITY_TABLE = """
CREATE TABLE IF NOT EXISTS activity_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_id    TEXT NOT NULL,
    severity        TEXT NOT NULL,
    message         TEXT NOT NULL,
    details_json    TEXT NOT NULL DEFAULT '{}',
    timestamp       TEXT NOT NULL
);
"""

_RESULTS_TABLE = """
CREATE TABLE IF NOT EXISTS results (
    id              TEXT    PRIMARY KEY,
    search_id       TEXT    NOT NULL,
    execution_id    TEXT    NOT NULL,
    source          TEXT    NOT NULL,
    external_id     TEXT    NOT NULL DEFAULT '',
    title           TEXT    NOT NULL,
    organization    TEXT    NOT NULL DEFAULT '',
    location        TEXT    NOT NULL DEFAULT '',
    url             TEXT    NOT NULL,
    description     TEXT    NOT NULL DEFAULT '',
    salary_min      INTEGER,
    salary_max      INTEGER,
    salary_currency TEXT    NOT NULL DEFAULT 'USD',
    posted_at       TEXT,
    score           REAL    NOT NULL DEFAULT 0.0,
    state           TEXT,
    is_duplicate    INTEGER NOT NULL DEFAULT 0,
    found_at        TEXT    NOT NULL
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_executions_search_id ON executions(search_id)",
    "CREATE INDEX IF NOT EXISTS idx_executions_started_at ON executions(started_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_activity_execution_id ON activity_logs(execution_id)",
    "CREATE INDEX IF NOT EXISTS idx_results_search_id ON results(search_id)",
)

# Columns added after the first schema; created on older databases by init_db.
_EXECUTION_COLUMNS = {
    "owner": "owner TEXT",
    "heartbeat_at": "heartbeat_at TEXT",
}


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_EXECUTIONS_TABLE)
    conn.execute(_ACTIVITY_TABLE)
    conn.execute(_RESULTS_TABLE)
    _ensure_columns(conn, "executions", _EXECUTION_COLUMNS)
    for statement in _INDEXES:
        conn.execute(statement)
    conn.commit()
    return conn


def _ensure_columns(conn: sqlite3.Connection, table: str, columns: dict[str, str]) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
    for name, definition in columns.items():
        if name not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {definition}")


def _placeholders(statuses: tuple[ExecutionStatus, ...]) -> str:
    return ",".join("?" * len(statuses))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


def insert_execution(conn: sqlite3.Connection, execution: Execution) -> None:
    """Persist a new execution row."""
    conn.execute(
        """
        INSERT INTO executions (id, search_id, status, trigger, started_at, owner, heartbeat_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            execution.id,
            execution.search_id,
            execution.status.value,
            execution.trigger,
            execution.started_at.isoformat(),
            execution.owner,
            _iso(execution.heartbeat_at),
        ),
    )
    conn.commit()


def finish_execution(
    conn: sqlite3.Connection,
    execution_id: str,
    *,
    status: ExecutionStatus,
    completed_at: datetime,
    execution_time_ms: int,
    total_results_found: int,
    new_results_found: int,
    duplicate_results_filtered: int,
    sources_failed: int,
    error_message: str | None = None,
) -> bool:
    """Write the terminal state of an execution.

    Only rows whose current status may move to ``status`` (see
    ALLOWED_TRANSITIONS) are updated; a terminal row is immutable.
    Returns True if a row was updated.
    """
    if not status.is_terminal:
        msg = f"'{status}' is not a terminal status"
        raise ValueError(msg)
    sources = statuses_leading_to(status)
    cursor = conn.execute(
        f"""
        UPDATE executions SET
            status = ?,
            completed_at = ?,
            execution_time_ms = ?,
            total_results_found = ?,
            new_results_found = ?,
            duplicate_results_filtered = ?,
            sources_failed = ?,
            error_message = ?
        WHERE id = ? AND status IN ({_placeholders(sources)})
        """,
        (
            status.value,
            completed_at.isoformat(),
            execution_time_ms,
            total_results_found,
            new_results_found,
            duplicate_results_filtered,
            sources_failed,
            error_message,
            execution_id,
            *(s.value for s in sources),
        ),
    )
    conn.commit()
    return cursor.rowcount > 0


def touch_execution(conn: sqlite3.Connection, execution_id: str, at: datetime) -> bool:
    """Refresh the heartbeat of a running execution. Returns True if updated."""
    cursor = conn.execute(
        "UPDATE executions SET heartbeat_at = ? WHERE id = ? AND status = ?",
        (at.isoformat(), execution_id, ExecutionStatus.RUNNING.value),
    )
    conn.commit()
    return cursor.rowcount > 0


def _row_to_execution(row: sqlite3.Row) -> Execution:
    return Execution(
        id=row["id"],
        search_id=row["search_id"],
        status=ExecutionStatus(row["status"]),
        trigger=row["trigger"],
        started_at=datetime.fromisoformat(row["started_at"]),
        completed_at=_parse(row["completed_at"]),
        execution_time_ms=row["execution_time_ms"],
        total_results_found=row["total_results_found"],
        new_results_found=row["new_results_found"],
        duplicate_results_filtered=row["duplicate_results_filtered"],
        sources_failed=row["sources_failed"],
        error_message=row["error_message"],
        owner=row["owner"],
        heartbeat_at=_parse(row["heartbeat_at"]),
    )


def get_execution(conn: sqlite3.Connection, execution_id: str) -> Execution | None:
    row = conn.execute("SELECT * FROM executions WHERE id = ?", (execution_id,)).fetchone()
    return _row_to_execution(row) if row is not None else None


def list_executions(
    conn: sqlite3.Connection,
    search_id: str | None = None,
    limit: int = 20,
) -> list[Execution]:
    """Return executions, newest first, optionally for one search."""
    if search_id is None:
        rows = conn.execute(
            "SELECT * FROM executions ORDER BY started_at DESC LIMIT ?", (limit,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM executions WHERE search_id = ? ORDER BY started_at DESC LIMIT ?",
            (search_id, limit),
        ).fetchall()
    return [_row_to_execution(r) for r in rows]


def fail_open_executions(
    conn: sqlite3.Connection,
    message: str,
    *,
    stale_before: datetime | None = None,
    exclude_owner: str | None = None,
) -> int:
    """Mark open executions as failed. Returns the row count.

    With ``stale_before``, only rows whose heartbeat is missing or older are
    failed; rows held by ``exclude_owner`` are always left alone.
    """
    sources = statuses_leading_to(ExecutionStatus.FAILED)
    clauses = [f"status IN ({_placeholders(sources)})"]
    params: list[object] = [s.value for s in sources]
    if stale_before is not None:
        clauses.append("(heartbeat_at IS NULL OR heartbeat_at < ?)")
        params.append(stale_before.isoformat())
    if exclude_owner is not None:
        clauses.append("(owner IS NULL OR owner != ?)")
        params.append(exclude_owner)

    cursor = conn.execute(
        f"""
        UPDATE executions SET status = ?, completed_at = ?, error_message = ?
        WHERE {" AND ".join(clauses)}
        """,
        (ExecutionStatus.FAILED.value, datetime.now().isoformat(), message, *params),
    )
    conn.commit()
    return cursor.rowcount


def search_statistics(
    conn: sqlite3.Connection, since: datetime, top_n: int = 5,
) -> ExecutionStatistics:
    """Aggregate the executions started at or after ``since``."""
    rows = conn.execute(
        """
        SELECT status, started_at, execution_time_ms, total_results_found
        FROM executions WHERE started_at >= ?
        """,
        (since.isoformat(),),
    ).fetchall()

    stats = ExecutionStatistics(since=since, total_executions=len(rows))
    durations: list[int] = []
    for row in rows:
        status = ExecutionStatus(row["status"])
        if status in (ExecutionStatus.QUEUED, ExecutionStatus.RUNNING):
            stats.active_executions += 1
        elif status == ExecutionStatus.COMPLETED:
            stats.completed_executions += 1
        elif status == ExecutionStatus.FAILED:
            stats.failed_executions += 1
        elif status == ExecutionStatus.CANCELLED:
            stats.cancelled_executions += 1
        if row["execution_time_ms"] is not None:
            durations.append(row["execution_time_ms"])
        stats.total_results_found += row["total_results_found"]
        stats.hourly_distribution[datetime.fromisoformat(row["started_at"]).hour] += 1
    if durations:
        stats.avg_execution_time_ms = round(sum(durations) / len(durations), 1)

    source_rows = conn.execute(
        """
        SELECT r.source, COUNT(*) AS n
        FROM results r JOIN executions e ON e.id = r.execution_id
        WHERE e.started_at >= ?
        GROUP BY r.source
        ORDER BY n DESC, r.source
        LIMIT ?
        """,
        (since.isoformat(), top_n),
    ).fetchall()
    stats.top_sources = [SourceCount(source=r["source"], count=r["n"]) for r in source_rows]
    return stats


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


def insert_activity(conn: sqlite3.Connection, entry: ActivityLogEntry) -> int:
    """Append an activity entry. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO activity_logs (execution_id, severity, message, details_json, timestamp)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            entry.execution_id,
            entry.severity.value,
            entry.message,
            json.dumps(entry.details, default=str),
            entry.timestamp.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_activity(
    conn: sqlite3.Connection,
    execution_id: str,
    severity: Severity | None = None,
) -> list[ActivityLogEntry]:
    """Return the activity log for an execution in insertion order."""
    sql = "SELECT * FROM activity_logs WHERE execution_id = ?"
    params: list[str] = [execution_id]
    if severity is not None:
        sql += " AND severity = ?"
        params.append(severity.value)
    rows = conn.execute(sql + " ORDER BY id", params).fetchall()
    return [
        ActivityLogEntry(
            execution_id=r["execution_id"],
            severity=Severity(r["severity"]),
            message=r["message"],
            details=json.loads(r["details_json"]),
            timestamp=datetime.fromisoformat(r["timestamp"]),
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def insert_results(conn: sqlite3.Connection, records: Iterable[ResultRecord]) -> int:
    """Insert a batch of results in one transaction. Returns the number inserted."""
    rows = [
        (
            r.id,
            r.search_id,
            r.execution_id,
            r.source,
            r.external_id,
            r.title,
            r.organization,
            r.location,
            r.url,
            r.description,
            r.salary_min,
            r.salary_max,
            r.salary_currency,
            _iso(r.posted_at),
            r.score,
            r.state.value if r.state is not None else None,
            int(r.is_duplicate),
            r.found_at.isoformat(),
        )
        for r in records
    ]
    if not rows:
        return 0
    with conn:
        conn.executemany(
            """
            INSERT INTO results
                (id, search_id, execution_id, source, external_id, title, organization,
                 location, url, description, salary_min, salary_max, salary_currency,
                 posted_at, score, state, is_duplicate, found_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
    return len(rows)


def _row_to_result(row: sqlite3.Row) -> ResultRecord:
    return ResultRecord(
        id=row["id"],
        search_id=row["search_id"],
        execution_id=row["execution_id"],
        source=row["source"],
        external_id=row["external_id"],
        title=row["title"],
        organization=row["organization"],
        location=row["location"],
        url=row["url"],
        description=row["description"],
        salary_min=row["salary_min"],
        salary_max=row["salary_max"],
        salary_currency=row["salary_currency"],
        posted_at=_parse(row["posted_at"]),
        score=row["score"],
        state=ResultState(row["state"]) if row["state"] else None,
        is_duplicate=bool(row["is_duplicate"]),
        found_at=datetime.fromisoformat(row["found_at"]),
    )


def query_results(
    conn: sqlite3.Connection,
    search_id: str,
    *,
    source: str | None = None,
    execution_id: str | None = None,
    min_score: float | None = None,
    state: ResultState | None = None,
    include_duplicates: bool = True,
    limit: int | None = None,
) -> list[ResultRecord]:
    """Return results for a search, highest score first."""
    sql = "SELECT * FROM results WHERE search_id = ?"
    params: list[object] = [search_id]
    if source is not None:
        sql += " AND source = ?"
        params.append(source)
    if execution_id is not None:
        sql += " AND execution_id = ?"
        params.append(execution_id)
    if min_score is not None:
        sql += " AND score >= ?"
        params.append(min_score)
    if state is not None:
        sql += " AND state = ?"
        params.append(state.value)
    if not include_duplicates:
        sql += " AND is_duplicate = 0"
    sql += " ORDER BY score DESC, found_at"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_result(r) for r in conn.execute(sql, params).fetchall()]


def get_identity_rows(
    conn: sqlite3.Connection,
    search_id: str,
) -> list[tuple[str, str, str, str]]:
    """Return (url, source, title, organization) for every stored result of a search."""
    rows = conn.execute(
        "SELECT url, source, title, organization FROM results WHERE search_id = ?",
        (search_id,),
    ).fetchall()
    return [(r["url"], r["source"], r["title"], r["organization"]) for r in rows]


def mark_duplicates(conn: sqlite3.Connection, result_ids: Iterable[str]) -> int:
    """Flag the given results as duplicates. Returns the number updated."""
    ids = [(rid,) for rid in result_ids]
    if not ids:
        return 0
    with conn:
        cursor = conn.executemany(
            "UPDATE results SET is_duplicate = 1 WHERE id = ? AND is_duplicate = 0", ids,
        )
    return cursor.rowcount


def set_result_state(
    conn: sqlite3.Connection,
    result_id: str,
    state: ResultState | None,
) -> bool:
    """Set or clear the bookmarked/dismissed/viewed state. Returns False if unknown."""
    cursor = conn.execute(
        "UPDATE results SET state = ? WHERE id = ?",
        (state.value if state is not None else None, result_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def count_results(
    conn: sqlite3.Connection,
    search_id: str,
    execution_id: str | None = None,
) -> int:
    if execution_id is None:
        row = conn.execute(
            "SELECT COUNT(*) FROM results WHERE search_id = ?", (search_id,),
        ).fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) FROM results WHERE search_id = ? AND execution_id = ?",
            (search_id, execution_id),
        ).fetchone()
    return int(row[0])
