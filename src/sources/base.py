"""Abstract base class for source adapters and the query they receive."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from pydantic import BaseModel, ConfigDict, Field

from src.core.config import DelayPolicy, SearchFilters, SearchSpec
from src.core.schemas import RawListing
from src.engine.cancellation import CancellationToken


class SearchQuery(BaseModel):
    """The query parameters handed to every adapter for one search."""

    model_config = ConfigDict(frozen=True)

    search_id: str
    terms: str
    location: str = ""
    filters: SearchFilters = Field(default_factory=SearchFilters)

    @classmethod
    def from_spec(cls, spec: SearchSpec) -> "SearchQuery":
        return cls(
            search_id=spec.id,
            terms=spec.job_title,
            location=spec.location,
            filters=spec.filters,
        )

    def describe(self) -> dict[str, object]:
        """Parameters as logged in activity details."""
        return {
            "search_terms": self.terms,
            "location": self.location or "Remote",
            **self.filters.model_dump(exclude_defaults=True),
        }


class SourceAdapter(ABC):
    """Base class that every listing source must implement.

    An adapter yields raw listings one at a time and must stop pulling new
    items once the cancellation token is signalled.
    """

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Unique identifier for this source (e.g. 'linkedin')."""

    @property
    def search_url(self) -> str:
        """Human-readable entry point shown in progress snapshots."""
        return f"https://{self.source_id}.com/jobs/search"

    async def connect(self, query: SearchQuery) -> None:  # noqa: B027
        """Handshake with the source before collection. Default is a no-op."""

    @abstractmethod
    def stream(
        self,
        query: SearchQuery,
        max_results: int,
        delay: DelayPolicy,
        token: CancellationToken,
    ) -> AsyncIterator[RawListing]:
        """Yield up to max_results raw listings for the query."""
