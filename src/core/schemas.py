"""Core data models for the search execution engine."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TOTAL_STEPS = 5


class ExecutionStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INDETERMINATE = "indeterminate"
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})

# Persisted transitions. CANCELLING lives only in memory.
ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.QUEUED: frozenset({
        ExecutionStatus.RUNNING, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED,
    }),
    ExecutionStatus.RUNNING: _TERMINAL,
}


def statuses_leading_to(target: ExecutionStatus) -> tuple[ExecutionStatus, ...]:
    """Persisted statuses a row may hold before moving to target."""
    return tuple(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


class Severity(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ResultState(StrEnum):
    BOOKMARKED = "bookmarked"
    DISMISSED = "dismissed"
    VIEWED = "viewed"


class RawListing(BaseModel):
    """A listing as yielded by a source adapter, before scoring."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    source: str
    title: str
    organization: str = ""
    location: str = ""
    url: str
    description: str = ""
    salary_min: int | None = None
    salary_max: int | None = None
    salary_currency: str = "USD"
    remote_type: str = ""
    posted_at: datetime | None = None


class ResultRecord(BaseModel):
    """A normalized, scored listing persisted against a search."""

    model_config = ConfigDict(frozen=True)

    id: str
    search_id: str
    execution_id: str
    source: str
    external_id: str = ""
    title: str
    organization: str = ""
    location: str = ""
    url: str
    description: str = ""
    salary_min: int | None = None
    salary_max: int | None = None
    salary_currency: str = "USD"
    posted_at: datetime | None = None
    score: float = Field(default=0.0, ge=0.0, le=100.0)
    state: ResultState | None = None
    is_duplicate: bool = False
    found_at: datetime = Field(default_factory=datetime.now)


class Execution(BaseModel):
    """One run of a search, as stored in the executions table."""

    id: str
    search_id: str
    status: ExecutionStatus
    trigger: str = "manual"
    started_at: datetime
    completed_at: datetime | None = None
    execution_time_ms: int | None = None
    total_results_found: int = 0
    new_results_found: int = 0
    duplicate_results_filtered: int = 0
    sources_failed: int = 0
    error_message: str | None = None
    owner: str | None = None
    heartbeat_at: datetime | None = None


class ProgressSnapshot(BaseModel):
    """In-flight view of a running execution. Replaced, never mutated."""

    model_config = ConfigDict(frozen=True)

    current_step: str = "Initializing"
    completed_steps: int = Field(default=0, ge=0)
    total_steps: int = TOTAL_STEPS
    results_found: int = Field(default=0, ge=0)
    current_source: str | None = None
    current_url: str | None = None


class ActivityLogEntry(BaseModel):
    """A durable, append-only log line tied to an execution."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    severity: Severity
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class StartResult(BaseModel):
    execution_id: str
    status: str = "started"
    search_id: str = ""


class StatusReport(BaseModel):
    """Answer to a get_status call."""

    execution_id: str
    status: ExecutionStatus
    progress: ProgressSnapshot | None = None
    uptime_ms: int = 0
    execution: Execution | None = None
    error: str | None = None


class SourceCount(BaseModel):
    source: str
    count: int


class ExecutionStatistics(BaseModel):
    """Aggregate view of the executions started since a point in time."""

    since: datetime
    total_executions: int = 0
    active_executions: int = 0
    completed_executions: int = 0
    failed_executions: int = 0
    cancelled_executions: int = 0
    avg_execution_time_ms: float = 0.0
    total_results_found: int = 0
    top_sources: list[SourceCount] = Field(default_factory=list)
    # Executions started per hour of day, index 0-23
    hourly_distribution: list[int] = Field(default_factory=lambda: [0] * 24)
