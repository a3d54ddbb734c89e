"""Tests for the listing filter chain and duplicate detection."""

from src.core.schemas import RawListing
from src.pipeline.matcher import (
    DuplicateDetector,
    ExcludeKeywordsFilter,
    PositiveKeywordsFilter,
    cross_source_duplicates,
    identity_key,
    run_filter_chain,
    url_key,
)


def _listing(
    external_id: str = "1",
    title: str = "Senior Python Engineer",
    *,
    source: str = "linkedin",
    organization: str = "Acme",
    url: str | None = None,
    description: str = "",
) -> RawListing:
    return RawListing(
        external_id=external_id,
        source=source,
        title=title,
        organization=organization,
        url=url or f"https://{source}.com/jobs/{external_id}",
        description=description,
    )


# ---------------------------------------------------------------------------
# Keyword filters
# ---------------------------------------------------------------------------
class TestExcludeKeywordsFilter:
    def test_removes_matching_titles(self) -> None:
        f = ExcludeKeywordsFilter(["junior", "PHP"])
        listings = [
            _listing("1", "Senior Python Engineer"),
            _listing("2", "Junior Python Engineer"),
            _listing("3", "php developer"),
        ]
        assert [x.external_id for x in f(listings)] == ["1"]

    def test_ignores_description(self) -> None:
        f = ExcludeKeywordsFilter(["junior"])
        listings = [_listing("1", description="mentor junior engineers")]
        assert f(listings) == listings

    def test_empty_is_noop(self) -> None:
        listings = [_listing("1")]
        assert ExcludeKeywordsFilter(["", "  "])(listings) is listings


class TestPositiveKeywordsFilter:
    def test_title_or_description(self) -> None:
        f = PositiveKeywordsFilter(["django"])
        listings = [
            _listing("1", "Django Developer"),
            _listing("2", "Backend Engineer", description="We use Django and Postgres"),
            _listing("3", "Backend Engineer", description="Go and Kafka"),
        ]
        assert [x.external_id for x in f(listings)] == ["1", "2"]

    def test_empty_is_noop(self) -> None:
        listings = [_listing("1")]
        assert PositiveKeywordsFilter([])(listings) is listings


class TestRunFilterChain:
    def test_applies_in_order(self) -> None:
        listings = [
            _listing("1", "Senior Django Engineer"),
            _listing("2", "Junior Django Engineer"),
            _listing("3", "Senior Go Engineer"),
        ]
        result = run_filter_chain(
            listings, [ExcludeKeywordsFilter(["junior"]), PositiveKeywordsFilter(["django"])],
        )
        assert [x.external_id for x in result] == ["1"]

    def test_no_filters(self) -> None:
        listings = [_listing("1")]
        assert run_filter_chain(listings, []) == listings


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------
class TestKeys:
    def test_url_key_normalizes(self) -> None:
        assert url_key("HTTPS://LinkedIn.com/jobs/1/?ref=abc#top") == "https://linkedin.com/jobs/1"

    def test_identity_key_normalizes_whitespace_and_case(self) -> None:
        assert identity_key("LinkedIn", "  Senior   Dev ", "ACME") == ("linkedin", "senior dev", "acme")


# ---------------------------------------------------------------------------
# DuplicateDetector
# ---------------------------------------------------------------------------
class TestDuplicateDetector:
    def test_seeded_by_url(self) -> None:
        detector = DuplicateDetector([("https://linkedin.com/jobs/1", "linkedin", "Other", "Else")])
        assert detector.is_duplicate(_listing("1")) is True

    def test_seeded_by_identity(self) -> None:
        detector = DuplicateDetector(
            [("https://linkedin.com/jobs/old", "linkedin", "Senior Python Engineer", "Acme")],
        )
        assert detector.is_duplicate(_listing("new")) is True

    def test_new_listing(self) -> None:
        detector = DuplicateDetector()
        assert detector.is_duplicate(_listing("1")) is False
        assert len(detector) == 1

    def test_remembers_checked_listings(self) -> None:
        detector = DuplicateDetector()
        detector.is_duplicate(_listing("1"))
        assert detector.is_duplicate(_listing("1")) is True

    def test_same_title_other_source_not_duplicate(self) -> None:
        detector = DuplicateDetector()
        detector.is_duplicate(_listing("1", source="linkedin"))
        assert detector.is_duplicate(_listing("1", source="indeed")) is False

    def test_same_title_other_organization_not_duplicate(self) -> None:
        detector = DuplicateDetector()
        detector.is_duplicate(_listing("1", organization="Acme"))
        assert detector.is_duplicate(_listing("2", organization="Globex")) is False


class TestCrossSourceDuplicates:
    def test_flags_later_sources(self) -> None:
        records = [
            ("a", "linkedin", "Python Dev", "Acme"),
            ("b", "indeed", "python dev", "ACME"),
            ("c", "glassdoor", "Python Dev", "Acme"),
            ("d", "indeed", "Go Dev", "Acme"),
        ]
        assert cross_source_duplicates(records) == ["b", "c"]

    def test_same_source_repeats_not_flagged(self) -> None:
        records = [
            ("a", "linkedin", "Python Dev", "Acme"),
            ("b", "linkedin", "Python Dev", "Acme"),
        ]
        assert cross_source_duplicates(records) == []

    def test_empty(self) -> None:
        assert cross_source_duplicates([]) == []
