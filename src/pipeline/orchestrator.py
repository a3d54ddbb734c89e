"""Orchestrator: drives one search across all configured sources.

Phases (total_steps = 5):
  1. Prepare search parameters: build query, resolve adapters, load prior results
  2. Connect to job boards: adapter handshake per source
  3. Search each source: stream, throttle, filter, score, store one batch
  4. Process results: cross-source duplicate flagging and tallies
  5. Finalize

The cancellation token is checked after phase 1, phase 2, every source of
phase 3, and phase 4. Each source's batch is stored before its checkpoint, so
a stop or crash later in the run never loses earlier sources' results.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.core.config import EngineConfig, SearchSpec
from src.core.errors import CancellationError, PersistenceError, SourceAdapterError
from src.core.schemas import RawListing, ResultRecord
from src.engine.cancellation import CancellationToken
from src.engine.progress import ProgressTracker
from src.pipeline.activity_logger import ActivityLogger
from src.pipeline.matcher import (
    DuplicateDetector,
    ExcludeKeywordsFilter,
    Filter,
    PositiveKeywordsFilter,
    cross_source_duplicates,
    run_filter_chain,
)
from src.pipeline.result_store import ResultStore
from src.pipeline.scorer import Scorer, score_listings
from src.pipeline.throttle import throttle
from src.sources.base import SearchQuery, SourceAdapter

logger = logging.getLogger(__name__)

PREPARE = "Preparing search parameters"
CONNECT = "Connecting to job boards"
COLLECT = "Searching job boards"
PROCESS = "Processing results"
FINALIZE = "Finalizing"
COMPLETED = "Completed"


@dataclass
class SourceOutcome:
    """What one source contributed to the run."""

    source: str
    collected: int = 0
    stored: int = 0
    duplicates: int = 0
    error: str | None = None


@dataclass
class ExecutionStats:
    """Running counters, readable by the manager even if the run unwinds early."""

    total_results_found: int = 0
    new_results_found: int = 0
    duplicate_results_filtered: int = 0
    sources_failed: int = 0
    outcomes: dict[str, SourceOutcome] = field(default_factory=dict)
    # (record_id, source, title, organization) of stored, non-duplicate records
    stored: list[tuple[str, str, str, str]] = field(default_factory=list)

    def outcome(self, source: str) -> SourceOutcome:
        return self.outcomes.setdefault(source, SourceOutcome(source))

    def fail(self, source: str, error: str) -> None:
        outcome = self.outcome(source)
        if outcome.error is None:
            self.sources_failed += 1
        outcome.error = error


class SearchOrchestrator:
    """Runs the five phases of one execution.

    Collaborators are injected; the orchestrator never touches the execution
    table. Terminal state is the ExecutionManager's job.
    """

    def __init__(
        self,
        *,
        execution_id: str,
        spec: SearchSpec,
        adapters: Mapping[str, SourceAdapter],
        store: ResultStore,
        activity: ActivityLogger,
        tracker: ProgressTracker,
        token: CancellationToken,
        scorer: Scorer,
        engine: EngineConfig | None = None,
        stats: ExecutionStats | None = None,
    ) -> None:
        self._execution_id = execution_id
        self._spec = spec
        self._adapters = adapters
        self._store = store
        self._activity = activity
        self._tracker = tracker
        self._token = token
        self._scorer = scorer
        self._engine = engine or EngineConfig()
        self.stats = stats if stats is not None else ExecutionStats()

        self._query = SearchQuery.from_spec(spec)
        self._active: list[SourceAdapter] = []
        self._filters: list[Filter] = []
        self._detector = DuplicateDetector()

    async def run(self) -> ExecutionStats:
        """Execute all phases. Raises CancellationError at a signalled checkpoint."""
        logger.info("Executing search '%s' (%s)", self._spec.id, self._execution_id)

        self._begin(1, PREPARE)
        self._prepare()
        self._end(1, PREPARE)
        self._token.raise_if_cancelled(PREPARE)

        self._begin(2, CONNECT)
        await self._connect()
        self._end(2, CONNECT)
        self._token.raise_if_cancelled(CONNECT)

        self._begin(3, COLLECT)
        for adapter in self._active:
            await self._search_source(adapter)
            self._token.raise_if_cancelled(f"after {adapter.source_id}")
        self._end(3, COLLECT)

        self._begin(4, PROCESS)
        await self._process()
        self._end(4, PROCESS)
        self._token.raise_if_cancelled(PROCESS)

        self._begin(5, FINALIZE)
        self._tracker.update(
            COMPLETED,
            completed_steps=5,
            results_found=self.stats.total_results_found,
            current_source=None,
            current_url=None,
        )
        return self.stats

    # -----------------------------------------------------------------------
    # Progress helpers
    # -----------------------------------------------------------------------

    def _begin(self, step: int, label: str) -> None:
        self._tracker.update(
            label, completed_steps=step - 1, results_found=self.stats.total_results_found,
        )

    def _end(self, step: int, label: str) -> None:
        self._tracker.update(
            label, completed_steps=step, results_found=self.stats.total_results_found,
        )

    # -----------------------------------------------------------------------
    # Phase 1: prepare
    # -----------------------------------------------------------------------

    def _prepare(self) -> None:
        spec = self._spec
        for name in spec.sources:
            adapter = self._adapters.get(name)
            if adapter is None:
                self.stats.fail(name, "no adapter configured")
                self._activity.error(
                    self._execution_id,
                    f"No adapter configured for source '{name}'",
                    {"source": name},
                )
                continue
            self._active.append(adapter)

        self._filters = [
            ExcludeKeywordsFilter(spec.filters.exclude_keywords),
            PositiveKeywordsFilter(spec.filters.require_keywords),
        ]

        try:
            self._detector = DuplicateDetector(self._store.find_existing(spec.id))
        except PersistenceError as e:
            self._activity.error(
                self._execution_id,
                "Could not load previous results; duplicate detection limited to this run",
                {"error": str(e)},
            )

        self._activity.info(
            self._execution_id,
            "Prepared search parameters",
            {
                **self._query.describe(),
                "sources": [a.source_id for a in self._active],
                "max_results_per_source": spec.max_results_per_source,
                "previous_results": len(self._detector),
            },
        )

    # -----------------------------------------------------------------------
    # Phase 2: connect
    # -----------------------------------------------------------------------

    async def _connect(self) -> None:
        connected: list[SourceAdapter] = []
        for adapter in self._active:
            try:
                await adapter.connect(self._query)
            except CancellationError:
                raise
            except Exception as e:
                self.stats.fail(adapter.source_id, str(e))
                self._activity.error(
                    self._execution_id,
                    f"Could not connect to {adapter.source_id}",
                    {"source": adapter.source_id, "error": str(e)},
                )
                continue
            connected.append(adapter)
        self._active = connected

        if self._engine.connect_delay_s:
            await asyncio.sleep(self._engine.connect_delay_s)

    # -----------------------------------------------------------------------
    # Phase 3: per-source collection
    # -----------------------------------------------------------------------

    async def _search_source(self, adapter: SourceAdapter) -> None:
        name = adapter.source_id
        self._tracker.update(
            f"Searching {name.upper()}",
            completed_steps=2,
            results_found=self.stats.total_results_found,
            current_source=name,
            current_url=adapter.search_url,
        )
        self._activity.info(
            self._execution_id,
            f"Starting search on {name}",
            {
                "url": adapter.search_url,
                "max_results": self._spec.max_results_per_source,
                **self._query.describe(),
            },
        )

        try:
            listings = await self._collect(adapter)
        except Exception as e:
            error = e if isinstance(e, SourceAdapterError) else SourceAdapterError(name, str(e))
            logger.warning("Source %s failed: %s", name, error, exc_info=True)
            self.stats.fail(name, error.message)
            self._activity.error(
                self._execution_id,
                f"Search on {name} failed",
                {"source": name, "error": error.message},
            )
            return

        self.stats.outcome(name).collected = len(listings)
        self._activity.success(
            self._execution_id,
            f"Found {len(listings)} results on {name}",
            _summarize(listings),
        )
        await self._store_batch(name, listings)

    async def _collect(self, adapter: SourceAdapter) -> list[RawListing]:
        """Pull listings from one adapter, throttling between items."""
        spec = self._spec
        every = self._engine.log_every_n_items
        listings: list[RawListing] = []
        stream: AsyncIterator[RawListing] = adapter.stream(
            self._query, spec.max_results_per_source, spec.delay, self._token,
        )
        try:
            async for listing in stream:
                listings.append(listing)
                count = len(listings)
                if (count - 1) % every == 0:
                    self._activity.debug(
                        self._execution_id,
                        f"Analyzing job {count}/{spec.max_results_per_source}: {listing.title}",
                        {
                            "organization": listing.organization,
                            "salary_range": _salary_text(listing),
                            "url": listing.url,
                        },
                    )
                if count >= spec.max_results_per_source or self._token.cancelled:
                    break
                await throttle(spec.delay)
        except CancellationError as e:
            logger.debug(
                "%s stopped after %d item(s): %s", adapter.source_id, len(listings), e.message,
            )
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return listings

    async def _store_batch(self, name: str, listings: list[RawListing]) -> None:
        spec = self._spec
        kept = run_filter_chain(listings, self._filters)
        scores = await asyncio.to_thread(score_listings, kept, spec, self._scorer)

        records: list[ResultRecord] = []
        duplicates = 0
        for listing, score in zip(kept, scores, strict=True):
            is_duplicate = self._detector.is_duplicate(listing)
            if is_duplicate:
                duplicates += 1
                if spec.skip_duplicates:
                    continue
            records.append(_to_record(listing, spec.id, self._execution_id, score, is_duplicate))

        outcome = self.stats.outcome(name)
        if records:
            try:
                self._store.insert_batch(spec.id, records)
            except PersistenceError as e:
                self.stats.fail(name, str(e))
                self._activity.error(
                    self._execution_id,
                    f"Failed to store results from {name}",
                    {"source": name, "records": len(records), "error": str(e)},
                )
                return

        new = [r for r in records if not r.is_duplicate]
        outcome.stored = len(records)
        outcome.duplicates = duplicates
        self.stats.total_results_found += len(records)
        self.stats.new_results_found += len(new)
        self.stats.duplicate_results_filtered += duplicates
        self.stats.stored.extend((r.id, r.source, r.title, r.organization) for r in new)

        self._tracker.update(
            f"Searching {name.upper()}", results_found=self.stats.total_results_found,
        )
        self._activity.info(
            self._execution_id,
            f"Stored {len(records)} job matches in database",
            {
                "stored_jobs": len(records),
                "duplicates": duplicates,
                "filtered_out": len(listings) - len(kept),
            },
        )

    # -----------------------------------------------------------------------
    # Phase 4: cross-source processing
    # -----------------------------------------------------------------------

    async def _process(self) -> None:
        dupes = cross_source_duplicates(self.stats.stored)
        if dupes:
            try:
                marked = self._store.mark_duplicates(dupes)
            except PersistenceError as e:
                self._activity.error(
                    self._execution_id,
                    "Could not flag cross-source duplicates",
                    {"error": str(e)},
                )
            else:
                self.stats.new_results_found -= marked
                self.stats.duplicate_results_filtered += marked
                flagged = set(dupes)
                self.stats.stored = [s for s in self.stats.stored if s[0] not in flagged]

        if self._engine.processing_delay_s:
            await asyncio.sleep(self._engine.processing_delay_s)

        self._activity.info(
            self._execution_id,
            f"Processed {self.stats.total_results_found} results",
            {
                "total_results": self.stats.total_results_found,
                "new_results": self.stats.new_results_found,
                "duplicates": self.stats.duplicate_results_filtered,
                "cross_source_duplicates": len(dupes),
                "sources_failed": self.stats.sources_failed,
            },
        )


def _to_record(
    listing: RawListing,
    search_id: str,
    execution_id: str,
    score: float,
    is_duplicate: bool,
) -> ResultRecord:
    return ResultRecord(
        id=uuid.uuid4().hex,
        search_id=search_id,
        execution_id=execution_id,
        source=listing.source,
        external_id=listing.external_id,
        title=listing.title.strip(),
        organization=listing.organization.strip(),
        location=listing.location.strip(),
        url=listing.url.strip(),
        description=" ".join(listing.description.split()),
        salary_min=listing.salary_min,
        salary_max=listing.salary_max,
        salary_currency=listing.salary_currency,
        posted_at=listing.posted_at,
        score=score,
        is_duplicate=is_duplicate,
    )


def _salary_text(listing: RawListing) -> str | None:
    if listing.salary_min is None or listing.salary_max is None:
        return None
    return f"${listing.salary_min:,} - ${listing.salary_max:,}"


def _summarize(listings: list[RawListing]) -> dict[str, Any]:
    """Aggregate statistics logged when a source finishes."""
    lows = [x.salary_min for x in listings if x.salary_min is not None]
    highs = [x.salary_max for x in listings if x.salary_max is not None]
    return {
        "results": len(listings),
        "organizations": sorted({x.organization for x in listings if x.organization}),
        "salary_range": {
            "min": min(lows) if lows else None,
            "max": max(highs) if highs else None,
        },
        "jobs": [x.title for x in listings],
    }
