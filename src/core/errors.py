"""Exception hierarchy for the search execution engine."""

from typing import Any


class EngineError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(EngineError):
    """A start request collides with an already-running execution."""


class NotFoundError(EngineError):
    """An operation referenced an unknown execution, search, or result."""


class SourceAdapterError(EngineError):
    """A single source failed. Non-fatal to the run."""

    def __init__(self, source: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.source = source
        super().__init__(f"{source}: {message}", details or {"source": source})


class CancellationError(EngineError):
    """Cooperative stop observed at a checkpoint.

    Never surfaced to callers; it resolves to status ``cancelled``.
    """

    def __init__(self, checkpoint: str = "") -> None:
        self.checkpoint = checkpoint
        message = "Search cancelled"
        if checkpoint:
            message = f"Search cancelled at '{checkpoint}'"
        super().__init__(message, {"checkpoint": checkpoint})


class PersistenceError(EngineError):
    """A write to the result store, activity log, or execution table failed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}", {"operation": operation})
