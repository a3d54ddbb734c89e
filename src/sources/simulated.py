"""Simulated listing source.

Generates plausible listings without network access. Used as the default
adapter for every source until a real provider integration is configured,
and by the test suite to drive the engine end to end.
"""

import logging
import random
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timedelta

from src.core.config import DelayPolicy
from src.core.errors import SourceAdapterError
from src.core.schemas import RawListing
from src.engine.cancellation import CancellationToken
from src.sources.base import SearchQuery, SourceAdapter

logger = logging.getLogger(__name__)

JOB_VARIANTS = (
    "Senior Position", "Lead Role", "Principal Level", "Staff Position",
    "Senior Developer", "Team Lead", "Technical Lead", "Solutions Architect",
    "Full Stack Developer", "Backend Engineer", "Frontend Specialist", "DevOps Engineer",
)

ORGANIZATIONS = (
    "TechCorp Solutions", "InnovateTech", "DataDriven Inc", "CloudFirst Systems",
    "AgileWorks", "ScaleUp Technologies", "NextGen Software", "DigitalEdge Corp",
    "SmartSystems LLC", "FutureTech Innovations", "CodeCraft Studios", "ByteBuilders Inc",
    "CloudNative Solutions", "DevOps Dynamics", "AI-First Technologies", "WebScale Inc",
)

LOCATIONS = (
    "Remote", "San Francisco, CA", "New York, NY", "Austin, TX",
    "Seattle, WA", "Boston, MA", "Denver, CO",
)

_DESCRIPTIONS = (
    "Join {org} as a {title} and help build cutting-edge software solutions.",
    "{org} is seeking a talented {title} to join our growing team.",
    "Exciting opportunity at {org} for a {title}. Help us scale our platform.",
    "{org} is hiring a {title} to lead technical initiatives and mentor developers.",
)


class SimulatedSourceAdapter(SourceAdapter):
    """Deterministic fake listing provider.

    Options:
        results: number of listings to produce (default: 5-25, seeded).
        seed: RNG seed (default: derived from the source name).
        fail_with: if set, connecting succeeds but streaming raises
            SourceAdapterError with this message.
        item_delay_s: extra simulated latency per item.
    """

    def __init__(
        self,
        source_id: str,
        *,
        results: int | None = None,
        seed: int | None = None,
        fail_with: str | None = None,
        item_delay_s: float = 0.0,
    ) -> None:
        self._source_id = source_id
        self._seed = seed if seed is not None else sum(map(ord, source_id))
        self._results = results
        self._fail_with = fail_with
        self._item_delay_s = item_delay_s

    @property
    def source_id(self) -> str:
        return self._source_id

    async def stream(
        self,
        query: SearchQuery,
        max_results: int,
        delay: DelayPolicy,
        token: CancellationToken,
    ) -> AsyncIterator[RawListing]:
        if self._fail_with:
            raise SourceAdapterError(self._source_id, self._fail_with)

        rng = random.Random(self._seed)
        count = self._results if self._results is not None else rng.randint(5, 25)
        count = min(count, max_results)
        logger.debug("Simulating %d listings from %s", count, self._source_id)

        for i in range(count):
            if token.cancelled:
                logger.debug("Stopping %s after %d items: cancelled", self._source_id, i)
                return
            if self._item_delay_s and await token.wait(self._item_delay_s):
                logger.debug("Stopping %s after %d items: cancelled", self._source_id, i)
                return
            yield self._listing(rng, query, i)

    def _listing(self, rng: random.Random, query: SearchQuery, index: int) -> RawListing:
        # Offset by seed so different sources list different roles.
        position = index + self._seed
        title = f"{query.terms} - {JOB_VARIANTS[position % len(JOB_VARIANTS)]}"
        org = ORGANIZATIONS[position % len(ORGANIZATIONS)]
        salary_min = 50_000 + index * 5_000 + rng.randint(0, 10_000)
        salary_max = salary_min + 30_000 + rng.randint(0, 20_000)
        external_id = str(uuid.UUID(int=rng.getrandbits(128)))
        location = query.location or rng.choice(LOCATIONS)
        return RawListing(
            external_id=external_id,
            source=self._source_id,
            title=title,
            organization=org,
            location=location,
            url=f"https://{self._source_id}.com/jobs/{external_id}",
            description=rng.choice(_DESCRIPTIONS).format(org=org, title=query.terms),
            salary_min=salary_min,
            salary_max=salary_max,
            remote_type="remote" if location == "Remote" else "onsite",
            posted_at=datetime.now() - timedelta(days=rng.randint(0, 14)),
        )
