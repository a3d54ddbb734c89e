"""Inter-item delays that keep source requests under rate limits.

All delays are randomized within the policy window. No fixed asyncio.sleep()
in the collection loop except via throttle().
"""

import asyncio
import logging
import random

from src.core.config import DelayPolicy

logger = logging.getLogger(__name__)


async def random_sleep(min_s: float, max_s: float) -> float:
    """Sleep for a random duration between min_s and max_s seconds.

    Floor enforcement: min_s is always respected as the absolute minimum.
    If max_s < min_s, max_s is raised to min_s.

    Returns the actual sleep duration (useful for testing).
    """
    floor = max(min_s, 0.0)
    ceiling = max(max_s, floor)
    duration = random.uniform(floor, ceiling)
    await asyncio.sleep(duration)
    return duration


async def throttle(policy: DelayPolicy) -> float:
    """Wait between two item fetches according to the delay policy.

    With respect_rate_limit off the loop still yields to the scheduler once.
    """
    if not policy.respect_rate_limit:
        await asyncio.sleep(0)
        return 0.0
    return await random_sleep(policy.min_s, policy.max_s)
