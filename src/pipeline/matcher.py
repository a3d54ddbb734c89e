"""Filter chain and duplicate detection for raw listings.

Filter order:
  1. ExcludeKeywordsFilter: fast, title-only, case-insensitive
  2. PositiveKeywordsFilter: optional, title OR description
  3. DuplicateDetector: against prior results of the same search and
     earlier listings of this run, by URL or by
     (source, title, organization)
"""

import logging
import re
from collections.abc import Callable, Iterable

from src.core.schemas import RawListing

logger = logging.getLogger(__name__)

# A filter is a callable that takes listings and returns a subset.
Filter = Callable[[list[RawListing]], list[RawListing]]

_WHITESPACE = re.compile(r"\s+")


def _norm(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip().lower()


def url_key(url: str) -> str:
    """Normalize a URL for duplicate comparison (case, trailing slash, query)."""
    return _norm(url).split("?", 1)[0].split("#", 1)[0].rstrip("/")


def identity_key(source: str, title: str, organization: str) -> tuple[str, str, str]:
    return (_norm(source), _norm(title), _norm(organization))


class ExcludeKeywordsFilter:
    """Remove listings whose title contains any excluded keyword (case-insensitive)."""

    def __init__(self, exclude_keywords: list[str]) -> None:
        self._keywords = [kw.lower().strip() for kw in exclude_keywords if kw.strip()]

    def __call__(self, listings: list[RawListing]) -> list[RawListing]:
        if not self._keywords:
            return listings
        result = [c for c in listings if not self._title_matches(c.title)]
        excluded = len(listings) - len(result)
        if excluded:
            logger.debug("ExcludeKeywordsFilter: removed %d listings", excluded)
        return result

    def _title_matches(self, title: str) -> bool:
        title_lower = title.lower()
        return any(kw in title_lower for kw in self._keywords)


class PositiveKeywordsFilter:
    """Keep only listings whose title OR description contains a required keyword.

    If require_keywords is empty, the filter is a no-op.
    """

    def __init__(self, require_keywords: list[str]) -> None:
        self._keywords = [kw.lower().strip() for kw in require_keywords if kw.strip()]

    def __call__(self, listings: list[RawListing]) -> list[RawListing]:
        if not self._keywords:
            return listings
        result = [c for c in listings if self._matches(c)]
        excluded = len(listings) - len(result)
        if excluded:
            logger.debug("PositiveKeywordsFilter: removed %d listings", excluded)
        return result

    def _matches(self, listing: RawListing) -> bool:
        text = f"{listing.title} {listing.description}".lower()
        return any(kw in text for kw in self._keywords)


class DuplicateDetector:
    """Tracks which listings were already captured for a search.

    Seeded with the identity rows already stored for the search; every listing
    checked through ``is_duplicate`` is remembered so later sources in the same
    run are compared against it too. Stateful across calls.
    """

    def __init__(self, existing: Iterable[tuple[str, str, str, str]] = ()) -> None:
        self._urls: set[str] = set()
        self._identities: set[tuple[str, str, str]] = set()
        for url, source, title, organization in existing:
            self._remember(url, source, title, organization)

    def __len__(self) -> int:
        return len(self._urls)

    def is_duplicate(self, listing: RawListing) -> bool:
        """Return True if seen before; remember the listing either way."""
        key_url = url_key(listing.url)
        key_id = identity_key(listing.source, listing.title, listing.organization)
        seen = key_url in self._urls or key_id in self._identities
        self._remember(listing.url, listing.source, listing.title, listing.organization)
        return seen

    def _remember(self, url: str, source: str, title: str, organization: str) -> None:
        self._urls.add(url_key(url))
        self._identities.add(identity_key(source, title, organization))


def run_filter_chain(
    listings: list[RawListing],
    filters: list[Filter],
) -> list[RawListing]:
    """Apply filters in order, returning the surviving listings."""
    result = listings
    for f in filters:
        result = f(result)
    return result


def cross_source_duplicates(
    records: Iterable[tuple[str, str, str, str]],
) -> list[str]:
    """Find records repeated across different sources by (title, organization).

    Takes (record_id, source, title, organization) tuples in insertion order and
    returns the ids of every record after the first occurrence from another source.
    """
    first_source: dict[tuple[str, str], str] = {}
    dupes: list[str] = []
    for record_id, source, title, organization in records:
        key = (_norm(title), _norm(organization))
        owner = first_source.setdefault(key, source)
        if owner != source:
            dupes.append(record_id)
    return dupes
