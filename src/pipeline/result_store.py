"""Result store: durable persistence of scored result batches.

Deduplication is advisory at write time. The store never rejects a record;
the orchestrator decides whether to flag or drop duplicates before insert.
"""

import logging
import sqlite3

from pydantic import BaseModel

from src.core.db import (
    count_results,
    get_identity_rows,
    insert_results,
    mark_duplicates,
    query_results,
    set_result_state,
)
from src.core.errors import NotFoundError, PersistenceError
from src.core.schemas import ResultRecord, ResultState

logger = logging.getLogger(__name__)


class ResultFilters(BaseModel):
    """Optional filters for query_by_search."""

    source: str | None = None
    execution_id: str | None = None
    min_score: float | None = None
    state: ResultState | None = None
    include_duplicates: bool = True
    limit: int | None = None


class ResultStore:
    """Persists ResultRecords keyed by search id.

    Usage::

        store = ResultStore(conn)
        store.insert_batch("search-1", records)
        rows = store.query_by_search("search-1", ResultFilters(min_score=60))
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def insert_batch(self, search_id: str, records: list[ResultRecord]) -> int:
        """Append a batch in one transaction. Raises PersistenceError on failure."""
        foreign = [r.id for r in records if r.search_id != search_id]
        if foreign:
            msg = f"{len(foreign)} records do not belong to search '{search_id}'"
            raise ValueError(msg)
        try:
            inserted = insert_results(self._conn, records)
        except sqlite3.Error as e:
            raise PersistenceError("insert_batch", str(e)) from e
        logger.debug("Stored %d results for search '%s'", inserted, search_id)
        return inserted

    def query_by_search(
        self,
        search_id: str,
        filters: ResultFilters | None = None,
    ) -> list[ResultRecord]:
        f = filters or ResultFilters()
        return query_results(
            self._conn,
            search_id,
            source=f.source,
            execution_id=f.execution_id,
            min_score=f.min_score,
            state=f.state,
            include_duplicates=f.include_duplicates,
            limit=f.limit,
        )

    def find_existing(self, search_id: str) -> list[tuple[str, str, str, str]]:
        """Return (url, source, title, organization) of every stored result."""
        try:
            return get_identity_rows(self._conn, search_id)
        except sqlite3.Error as e:
            raise PersistenceError("find_existing", str(e)) from e

    def mark_duplicates(self, result_ids: list[str]) -> int:
        try:
            return mark_duplicates(self._conn, result_ids)
        except sqlite3.Error as e:
            raise PersistenceError("mark_duplicates", str(e)) from e

    def set_state(self, result_id: str, state: ResultState | None) -> None:
        """Bookmark, dismiss, or mark a result viewed (None clears the state)."""
        if not set_result_state(self._conn, result_id, state):
            msg = f"Result '{result_id}' not found"
            raise NotFoundError(msg)

    def count_by_search(self, search_id: str, execution_id: str | None = None) -> int:
        return count_results(self._conn, search_id, execution_id)
