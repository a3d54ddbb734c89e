"""Rule-based relevance scoring for raw listings.

Score range: 0-100 (clamped). Individual bonuses from ScoringConfig.
Recency adds a time-decay bonus based on how long ago the listing was posted.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from src.core.config import ScoringConfig, SearchSpec
from src.core.schemas import RawListing

logger = logging.getLogger(__name__)

# Any callable with this shape can score listings for the orchestrator.
Scorer = Callable[[RawListing, SearchSpec], float]

SENIORITY_KEYWORDS = ("senior", "staff", "principal", "lead", "director", "head", "vp")


class RuleBasedScorer:
    """Scores a listing against a search using additive bonuses."""

    def __init__(self, config: ScoringConfig) -> None:
        self._config = config

    def __call__(self, listing: RawListing, spec: SearchSpec) -> float:
        config = self._config
        score = 0.0
        title_lower = listing.title.lower()

        # Title term match: every search term plus required keywords
        terms = [t for t in spec.job_title.lower().split() if len(t) > 2]
        terms += [kw.lower().strip() for kw in spec.filters.require_keywords if kw.strip()]
        if terms:
            hits = sum(1 for t in terms if t in title_lower)
            score += config.title_match_bonus * (hits / len(terms))

        if any(kw in title_lower for kw in SENIORITY_KEYWORDS):
            score += config.seniority_match_bonus

        location = f"{listing.remote_type} {listing.location}".lower()
        if "remote" in location:
            score += config.remote_bonus

        if spec.filters.salary_min is not None and listing.salary_max is not None:
            if listing.salary_max >= spec.filters.salary_min:
                score += config.salary_match_bonus

        score += _recency_score(listing.posted_at, config.recency_weight)

        return max(0.0, min(100.0, score))


def score_listings(
    listings: list[RawListing],
    spec: SearchSpec,
    scorer: Scorer,
) -> list[float]:
    """Score a batch of listings, preserving order."""
    return [max(0.0, min(100.0, float(scorer(listing, spec)))) for listing in listings]


def _recency_score(posted_at: datetime | None, weight: float, now: datetime | None = None) -> float:
    """Newer posts get higher bonuses. Max bonus = 10 * weight."""
    if posted_at is None:
        return 0.0
    now = now or datetime.now(posted_at.tzinfo)
    days_ago = max(0.0, (now - posted_at).total_seconds() / 86400)

    # Decay: 10 points for today, decreasing to 0 at 30+ days
    max_bonus = 10.0
    decay = max(0.0, max_bonus - (days_ago / 3.0))
    return decay * weight
